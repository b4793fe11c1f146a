"""Engine context: the store and the caches built on top of it."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field as dc_field
from typing import FrozenSet

from layout_composer import LayoutComposer
from permission_engine import PermissionEngine
from record_writer import RecordWriter
from schema_registry import SchemaRegistry


logger = logging.getLogger("certflow")


def _workflow_objects_from_env() -> FrozenSet[str]:
    raw = os.getenv("CERTFLOW_WORKFLOW_OBJECTS", "clients")
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


@dataclass
class EngineContext:
    store: object
    registry: SchemaRegistry
    layouts: LayoutComposer
    permissions: PermissionEngine
    writer: RecordWriter
    workflow_objects: FrozenSet[str] = dc_field(default_factory=lambda: frozenset({"clients"}))

    def invalidate(self, object_type: str | None = None) -> None:
        """Drop cached metadata and permissions after out-of-band changes."""
        self.registry.invalidate(object_type)
        self.layouts.invalidate(object_type)
        self.permissions.invalidate()


def build_context(store, workflow_objects=None) -> EngineContext:
    workflow_objects = frozenset(workflow_objects) if workflow_objects is not None else _workflow_objects_from_env()
    registry = SchemaRegistry(store)
    permissions = PermissionEngine(store)
    return EngineContext(
        store=store,
        registry=registry,
        layouts=LayoutComposer(store, registry),
        permissions=permissions,
        writer=RecordWriter(store, registry, permissions, workflow_objects),
        workflow_objects=workflow_objects,
    )


def build_default_context(use_db: bool) -> EngineContext:
    if use_db:
        from app.db import init_pool
        from app.stores_db import DbRecordStore

        init_pool()
        logger.info("engine_context store=db")
        return build_context(DbRecordStore())
    from app.seed import seed_demo

    logger.info("engine_context store=memory")
    return build_context(seed_demo())
