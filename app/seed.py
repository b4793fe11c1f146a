"""Schema and demo data for the in-memory store."""

from __future__ import annotations

import logging
from typing import Iterable

from app.stores import MemoryRecordStore


logger = logging.getLogger("certflow")

ADMIN_PROFILE_ID = "profile-admin"
VIEWER_PROFILE_ID = "profile-viewer"
ADMIN_USER_ID = "00000000-0000-0000-0000-000000000001"
VIEWER_USER_ID = "00000000-0000-0000-0000-000000000002"

BUSINESS_OBJECTS = ("clients", "channel_partners", "billing", "users")


def _col(name: str, data_type: str = "text", is_nullable: bool = True, default=None) -> dict:
    return {"name": name, "data_type": data_type, "is_nullable": is_nullable, "default": default}


def create_metadata_tables(store: MemoryRecordStore) -> None:
    store.create_table(
        "field_metadata",
        [
            _col("id", "uuid", False),
            _col("table_name", "text", False),
            _col("api_name", "text", False),
            _col("display_label"),
            _col("field_type"),
            _col("is_required", "boolean", default=False),
            _col("is_nullable", "boolean", default=True),
            _col("default_value"),
            _col("validation_rules", "jsonb"),
            _col("display_order", "integer", default=0),
            _col("section", default="details"),
            _col("width", default="half"),
            _col("is_visible", "boolean", default=True),
            _col("is_system_field", "boolean", default=False),
            _col("reference_table"),
            _col("reference_display_field"),
        ],
    )
    store.create_table(
        "layout_blocks",
        [
            _col("id", "uuid", False),
            _col("table_name", "text", False),
            _col("tab_type"),
            _col("block_type", default="field"),
            _col("field_id", "uuid"),
            _col("related_list_id", "uuid"),
            _col("label"),
            _col("section", default="details"),
            _col("display_order", "integer", default=0),
            _col("width", default="half"),
            _col("is_visible", "boolean", default=True),
        ],
    )
    store.create_table(
        "related_list_metadata",
        [
            _col("id", "uuid", False),
            _col("parent_table", "text", False),
            _col("child_table", "text", False),
            _col("foreign_key_field", "text", False),
            _col("label"),
            _col("display_columns", "jsonb"),
        ],
    )
    store.create_table("profiles", [_col("id", "uuid", False), _col("name", "text", False), _col("description")], unique=["name"])
    store.create_table("permission_sets", [_col("id", "uuid", False), _col("name", "text", False), _col("description")], unique=["name"])
    store.create_table(
        "profile_permission_sets",
        [_col("id", "uuid", False), _col("profile_id", "uuid", False), _col("permission_set_id", "uuid", False)],
        foreign_keys={"profile_id": "profiles", "permission_set_id": "permission_sets"},
    )
    store.create_table(
        "object_permissions",
        [
            _col("id", "uuid", False),
            _col("permission_set_id", "uuid", False),
            _col("object_name", "text", False),
            _col("can_create", "boolean", default=False),
            _col("can_read", "boolean", default=False),
            _col("can_update", "boolean", default=False),
            _col("can_delete", "boolean", default=False),
        ],
        foreign_keys={"permission_set_id": "permission_sets"},
    )
    store.create_table(
        "field_permissions",
        [
            _col("id", "uuid", False),
            _col("permission_set_id", "uuid", False),
            _col("object_name", "text", False),
            _col("field_name", "text", False),
            _col("can_read", "boolean", default=False),
            _col("can_edit", "boolean", default=False),
        ],
        foreign_keys={"permission_set_id": "permission_sets"},
    )
    store.create_table(
        "validation_rules",
        [
            _col("id", "uuid", False),
            _col("table_name", "text", False),
            _col("field", "text", False),
            _col("type", "text", False),
            _col("value"),
            _col("message", "text", False),
            _col("enabled", "boolean", default=True),
        ],
    )


def create_business_tables(store: MemoryRecordStore) -> None:
    store.create_table(
        "channel_partners",
        [_col("id", "uuid", False), _col("name", "text", False), _col("email"), _col("country"), _col("phone")],
        unique=["email"],
    )
    store.create_table(
        "clients",
        [
            _col("id", "uuid", False),
            _col("name", "text", False),
            _col("email"),
            _col("phone"),
            _col("status", default="application_form_sent"),
            _col("iso_standard"),
            _col("referred_by", "uuid"),
            _col("audit_date", "date"),
            _col("certified_at", "timestamp with time zone"),
            _col("contract_value", "numeric"),
            _col("employee_count", "integer"),
            _col("is_active", "boolean", default=True),
        ],
        unique=["email"],
        foreign_keys={"referred_by": "channel_partners"},
    )
    store.create_table(
        "billing",
        [
            _col("id", "uuid", False),
            _col("name", "text", False),
            _col("client_id", "uuid"),
            _col("amount", "numeric"),
            _col("invoice_date", "date"),
            _col("paid", "boolean", default=False),
        ],
        foreign_keys={"client_id": "clients"},
    )
    store.create_table(
        "users",
        [_col("id", "uuid", False), _col("email", "text", False), _col("full_name"), _col("profile_id", "uuid"), _col("department")],
        unique=["email"],
        foreign_keys={"profile_id": "profiles"},
    )


def grant(
    store: MemoryRecordStore,
    permission_set_id: str,
    object_type: str,
    actions: Iterable[str],
    fields: Iterable[str] = (),
    edit_fields: bool = False,
) -> None:
    actions = set(actions)
    store.insert(
        "object_permissions",
        {
            "permission_set_id": permission_set_id,
            "object_name": object_type,
            "can_create": "create" in actions,
            "can_read": "read" in actions,
            "can_update": "update" in actions,
            "can_delete": "delete" in actions,
        },
    )
    for name in fields:
        store.insert(
            "field_permissions",
            {
                "permission_set_id": permission_set_id,
                "object_name": object_type,
                "field_name": name,
                "can_read": True,
                "can_edit": edit_fields,
            },
        )


def _field_ids(store: MemoryRecordStore, object_type: str) -> dict:
    return {row["api_name"]: row["id"] for row in store.select("field_metadata", {"table_name": object_type})}


def add_field_blocks(store: MemoryRecordStore, object_type: str, tab: str, layout: Iterable[tuple]) -> None:
    """layout items are (api_name, section, display_order[, width])."""
    ids = _field_ids(store, object_type)
    for item in layout:
        api_name, section, order = item[:3]
        store.insert(
            "layout_blocks",
            {
                "table_name": object_type,
                "tab_type": tab,
                "block_type": "field",
                "field_id": ids[api_name],
                "section": section,
                "display_order": order,
                "width": item[3] if len(item) > 3 else "half",
            },
        )


def seed_demo(store: MemoryRecordStore | None = None) -> MemoryRecordStore:
    store = store or MemoryRecordStore()
    create_metadata_tables(store)
    create_business_tables(store)
    for object_type in BUSINESS_OBJECTS:
        store.rpc("sync_table_metadata", {"table_name_param": object_type})

    add_field_blocks(
        store,
        "clients",
        "information",
        [
            ("name", "basic", 1),
            ("email", "basic", 2),
            ("phone", "basic", 3),
            ("status", "basic", 4),
            ("iso_standard", "certification", 10),
            ("audit_date", "certification", 11),
            ("certified_at", "certification", 12),
            ("referred_by", "details", 20),
            ("contract_value", "details", 21),
            ("employee_count", "details", 22),
            ("is_active", "details", 23),
        ],
    )
    add_field_blocks(store, "channel_partners", "information", [("name", "basic", 1), ("email", "basic", 2), ("country", "basic", 3), ("phone", "basic", 4)])
    related = store.insert(
        "related_list_metadata",
        {
            "parent_table": "clients",
            "child_table": "billing",
            "foreign_key_field": "client_id",
            "label": "Invoices",
            "display_columns": ["name", "amount", "paid"],
        },
    )
    store.insert(
        "layout_blocks",
        {
            "table_name": "clients",
            "tab_type": "billing",
            "block_type": "related_list",
            "related_list_id": related["id"],
            "label": "Invoices",
            "section": "billing",
            "display_order": 1,
            "width": "full",
        },
    )

    admin = store.insert("profiles", {"id": ADMIN_PROFILE_ID, "name": "Administrator"})
    viewer = store.insert("profiles", {"id": VIEWER_PROFILE_ID, "name": "Viewer"})
    full = store.insert("permission_sets", {"name": "Full Access"})
    read_only = store.insert("permission_sets", {"name": "Read Only"})
    store.insert("profile_permission_sets", {"profile_id": admin["id"], "permission_set_id": full["id"]})
    store.insert("profile_permission_sets", {"profile_id": viewer["id"], "permission_set_id": read_only["id"]})
    for object_type in BUSINESS_OBJECTS:
        fields = [c["column_name"] for c in store.rpc("get_table_columns", {"table_name_param": object_type})]
        grant(store, full["id"], object_type, ("create", "read", "update", "delete"), fields, edit_fields=True)
        grant(store, read_only["id"], object_type, ("read",), fields, edit_fields=False)
    grant(store, full["id"], "field_metadata", ("read", "update"))

    store.insert("users", {"id": ADMIN_USER_ID, "email": "admin@example.com", "full_name": "Admin", "profile_id": admin["id"]})
    store.insert("users", {"id": VIEWER_USER_ID, "email": "viewer@example.com", "full_name": "Viewer", "profile_id": viewer["id"]})

    partner = store.insert("channel_partners", {"name": "Northwind Partners", "email": "hello@northwind.example", "country": "Germany"})
    store.insert("channel_partners", {"name": "Southern Cross Advisory", "email": "team@southerncross.example", "country": "Australia"})
    client = store.insert(
        "clients",
        {
            "name": "Acme Foods",
            "email": "quality@acme.example",
            "status": "draft_approved",
            "iso_standard": "ISO 22000:2018",
            "referred_by": partner["id"],
            "audit_date": "2025-06-12",
            "contract_value": 12500.0,
            "employee_count": 140,
        },
    )
    store.insert("clients", {"name": "Globex", "email": "ops@globex.example", "status": "certification_sent", "iso_standard": "ISO 9001:2015"})
    store.insert("billing", {"name": "INV-1001", "client_id": client["id"], "amount": 4500.0, "invoice_date": "2025-07-01"})
    logger.info("demo_seeded objects=%s", ",".join(BUSINESS_OBJECTS))
    return store
