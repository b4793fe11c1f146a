"""Permission engine: object and field access unioned across permission sets."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field as dc_field
from typing import Dict, FrozenSet, Iterable, Set, Tuple


OBJECT_ACTIONS = ("create", "read", "update", "delete")
FIELD_ACTIONS = ("read", "edit")

logger = logging.getLogger("certflow.permissions")


@dataclass(frozen=True)
class ProfileGrants:
    """Union of every permission set attached to one profile."""

    profile_id: str
    permission_set_ids: FrozenSet[str] = frozenset()
    objects: Dict[str, FrozenSet[str]] = dc_field(default_factory=dict)
    fields: Dict[Tuple[str, str], FrozenSet[str]] = dc_field(default_factory=dict)

    def allows_object(self, object_type: str, action: str) -> bool:
        return action in self.objects.get(object_type, frozenset())

    def allows_field(self, object_type: str, field_name: str, action: str) -> bool:
        return action in self.fields.get((object_type, field_name), frozenset())


def _truthy(value) -> bool:
    return value is True or value in ("t", "true", 1)


class PermissionEngine:
    """Answers canObject / canField questions.

    Access is opt-in: a missing profile, set or row means no access, and an
    unrecognised action is always refused.
    """

    def __init__(self, store) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._grants: Dict[str, ProfileGrants] = {}

    def _load(self, profile_id: str) -> ProfileGrants:
        links = self._store.select("profile_permission_sets", {"profile_id": profile_id})
        set_ids = sorted({str(row["permission_set_id"]) for row in links if row.get("permission_set_id") is not None})
        objects: Dict[str, Set[str]] = {}
        fields: Dict[Tuple[str, str], Set[str]] = {}
        for set_id in set_ids:
            for row in self._store.select("object_permissions", {"permission_set_id": set_id}):
                granted = objects.setdefault(row.get("object_name"), set())
                for action in OBJECT_ACTIONS:
                    if _truthy(row.get(f"can_{action}")):
                        granted.add(action)
            for row in self._store.select("field_permissions", {"permission_set_id": set_id}):
                granted = fields.setdefault((row.get("object_name"), row.get("field_name")), set())
                if _truthy(row.get("can_read")):
                    granted.add("read")
                if _truthy(row.get("can_edit")):
                    granted.add("edit")
        return ProfileGrants(
            profile_id=profile_id,
            permission_set_ids=frozenset(set_ids),
            objects={k: frozenset(v) for k, v in objects.items()},
            fields={k: frozenset(v) for k, v in fields.items()},
        )

    def grants(self, profile_id: str | None) -> ProfileGrants | None:
        if not profile_id:
            return None
        with self._lock:
            cached = self._grants.get(profile_id)
        if cached is not None:
            return cached
        loaded = self._load(profile_id)
        with self._lock:
            self._grants[profile_id] = loaded
        logger.info("permissions_loaded profile=%s sets=%s", profile_id, len(loaded.permission_set_ids))
        return loaded

    def can_object(self, profile_id: str | None, object_type: str, action: str) -> bool:
        if action not in OBJECT_ACTIONS:
            return False
        grants = self.grants(profile_id)
        return grants is not None and grants.allows_object(object_type, action)

    def can_field(self, profile_id: str | None, object_type: str, field_name: str, action: str) -> bool:
        if action not in FIELD_ACTIONS:
            return False
        grants = self.grants(profile_id)
        return grants is not None and grants.allows_field(object_type, field_name, action)

    def field_access(self, profile_id: str | None, object_type: str, names: Iterable[str]) -> dict[str, dict]:
        grants = self.grants(profile_id)
        access = {}
        for name in names:
            access[name] = {
                "read": grants is not None and grants.allows_field(object_type, name, "read"),
                "edit": grants is not None and grants.allows_field(object_type, name, "edit"),
            }
        return access

    def profile_for_user(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        rows = self._store.select("users", {"id": user_id})
        if not rows:
            return None
        profile_id = rows[0].get("profile_id")
        return str(profile_id) if profile_id is not None else None

    def invalidate(self, profile_id: str | None = None) -> None:
        with self._lock:
            if profile_id is None:
                self._grants.clear()
            else:
                self._grants.pop(profile_id, None)
