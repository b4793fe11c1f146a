"""Optimistic local editing of a single record."""

from __future__ import annotations

import logging
from typing import Any

from certflow.record_map import RecordMap


logger = logging.getLogger("certflow.writer")


class EditSession:
    """Holds the committed record and the staged snapshot for one page.

    Edits only touch the snapshot. Saving submits the whole snapshot through
    the writer; on success both copies become the row the store returned.
    There is no version check, so the last save wins.
    """

    def __init__(self, writer, object_type: str, record: dict, profile_id: str | None, actor_id: str | None = None) -> None:
        self._writer = writer
        self.object_type = object_type
        self.profile_id = profile_id
        self.actor_id = actor_id
        self.committed = RecordMap(record)
        self.snapshot = RecordMap(record)
        self.editing = False
        self.saving = False
        self.last_errors: list = []

    @property
    def record_id(self) -> Any:
        return self.committed.id

    @property
    def dirty(self) -> bool:
        return bool(self.snapshot.diff(self.committed))

    def begin(self) -> RecordMap:
        self.snapshot = RecordMap(self.committed)
        self.editing = True
        self.last_errors = []
        return self.snapshot

    def stage(self, api_name: str, value: Any) -> None:
        """Change callback handed to field editors."""
        if not self.editing:
            raise RuntimeError("stage() called outside an edit")
        self.snapshot = self.snapshot.with_value(api_name, value)

    def cancel(self) -> None:
        self.snapshot = RecordMap(self.committed)
        self.editing = False
        self.last_errors = []

    def save(self) -> dict:
        if self.saving:
            return {
                "ok": False,
                "errors": [{"code": "SAVE_IN_PROGRESS", "message": "A save is already in progress", "path": None, "detail": None}],
                "warnings": [],
                "record": None,
            }
        self.saving = True
        try:
            result = self._writer.update(
                self.profile_id,
                self.object_type,
                self.record_id,
                self.snapshot.to_dict(),
                self.actor_id,
            )
        finally:
            self.saving = False
        if result.get("ok"):
            self.committed = RecordMap(result.get("record") or {})
            self.snapshot = RecordMap(self.committed)
            self.editing = False
            self.last_errors = []
        else:
            # Keep the snapshot so the user can correct and retry.
            self.last_errors = list(result.get("errors") or [])
            logger.info("edit_save_failed object=%s id=%s", self.object_type, self.record_id)
        return result
