import json
import os
import sys
import unittest
from datetime import datetime, timezone
from decimal import Decimal


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.encoders import jsonable_encoder

from app.context import build_context
from app.seed import ADMIN_PROFILE_ID, ADMIN_USER_ID, VIEWER_PROFILE_ID, seed_demo
from app.stores import MemoryRecordStore
from certflow.errors import StoreError
from record_writer import AUDIT_COLUMNS, ensure_columns


class RecordingStore(MemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.calls = []
        self.refuse_alter = False

    def alter_schema(self, object_type, column, col_type, default=None):
        self.calls.append(("alter_schema", object_type, column))
        if self.refuse_alter:
            raise StoreError("permission denied for table", code="42501", table=object_type)
        return super().alter_schema(object_type, column, col_type, default)

    def insert(self, object_type, row):
        self.calls.append(("insert", object_type))
        return super().insert(object_type, row)

    def update(self, object_type, record_id, patch):
        self.calls.append(("update", object_type))
        return super().update(object_type, record_id, patch)


class TestRecordWriter(unittest.TestCase):
    def setUp(self) -> None:
        self.store = seed_demo(RecordingStore())
        self.store.calls = []
        self.ctx = build_context(self.store, workflow_objects=["clients"])
        self.writer = self.ctx.writer
        self.acme = self.store.select("clients", {"email": "quality@acme.example"})[0]

    def _revoke_edit(self, field_name: str) -> None:
        for row in self.store.select("field_permissions", {"object_name": "clients", "field_name": field_name}):
            if row["can_edit"]:
                self.store.delete("field_permissions", row["id"])
        self.ctx.permissions.invalidate()

    def test_audit_columns_added_before_first_update(self) -> None:
        result = self.writer.update_fields(ADMIN_PROFILE_ID, "clients", self.acme["id"], {"phone": "+1 555 0100"}, ADMIN_USER_ID)
        self.assertTrue(result["ok"], result["errors"])
        expected = [("alter_schema", "clients", name) for name, _, _ in AUDIT_COLUMNS] + [("update", "clients")]
        self.assertEqual(self.store.calls, expected)
        self.assertEqual(result["record"]["phone"], "+1 555 0100")
        self.assertEqual(result["record"]["updated_by"], ADMIN_USER_ID)
        self.assertIsNotNone(result["record"]["updated_at"])

        self.store.calls = []
        again = self.writer.update_fields(ADMIN_PROFILE_ID, "clients", self.acme["id"], {"phone": "+1 555 0101"}, ADMIN_USER_ID)
        self.assertTrue(again["ok"])
        self.assertEqual(self.store.calls, [("update", "clients")])

    def test_widening_failure_does_not_block_write(self) -> None:
        self.store.refuse_alter = True
        result = self.writer.update_fields(ADMIN_PROFILE_ID, "clients", self.acme["id"], {"phone": "+1 555 0199"}, ADMIN_USER_ID)
        self.assertTrue(result["ok"])
        codes = {w["code"] for w in result["warnings"]}
        self.assertEqual(codes, {"SCHEMA_WIDEN_FAILED"})
        self.assertNotIn("updated_by", result["record"])
        self.assertEqual(self.store.calls[-1], ("update", "clients"))

    def test_ensure_columns_is_idempotent(self) -> None:
        first = ensure_columns(self.store, self.ctx.registry, "billing")
        self.assertEqual(first["added"], [name for name, _, _ in AUDIT_COLUMNS])
        second = ensure_columns(self.store, self.ctx.registry, "billing")
        self.assertEqual(second["added"], [])
        self.assertEqual(second["warnings"], [])

    def test_duplicate_email_reports_field_and_value(self) -> None:
        result = self.writer.create(ADMIN_PROFILE_ID, "clients", {"name": "Acme Copy", "email": "quality@acme.example"}, ADMIN_USER_ID)
        self.assertFalse(result["ok"])
        error = result["errors"][0]
        self.assertEqual(error["code"], "RECORD_CONSTRAINT_VIOLATION")
        self.assertEqual(error["message"], 'A record with email "quality@acme.example" already exists.')
        self.assertFalse(error["detail"]["retryable"])

    def test_missing_required_name(self) -> None:
        result = self.writer.create(ADMIN_PROFILE_ID, "clients", {"email": "new@client.example"}, ADMIN_USER_ID)
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["message"], "Name is required.")

    def test_create_stamps_audit_columns_and_drops_unknown_keys(self) -> None:
        result = self.writer.create(
            ADMIN_PROFILE_ID,
            "clients",
            {"name": "Initech", "nickname": "ini", "id": "forced-id"},
            ADMIN_USER_ID,
        )
        self.assertTrue(result["ok"], result["errors"])
        record = result["record"]
        self.assertNotEqual(record["id"], "forced-id")
        self.assertNotIn("nickname", record)
        self.assertEqual(record["created_by"], ADMIN_USER_ID)
        self.assertEqual(record["status"], "application_form_sent")

    def test_viewer_is_refused_before_any_store_call(self) -> None:
        result = self.writer.update_fields(VIEWER_PROFILE_ID, "clients", self.acme["id"], {"phone": "x"})
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "PERMISSION_DENIED")
        self.assertEqual(self.store.calls, [])

    def test_field_edit_permission_checked_on_changed_fields_only(self) -> None:
        self.store.delete(
            "field_permissions",
            [
                row["id"]
                for row in self.store.select("field_permissions", {"object_name": "clients", "field_name": "email"})
                if row["can_edit"]
            ][0],
        )
        self.ctx.permissions.invalidate()
        unchanged = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], dict(self.acme, phone="1"), ADMIN_USER_ID)
        self.assertTrue(unchanged["ok"])
        changed = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], dict(self.acme, email="x@y.example"), ADMIN_USER_ID)
        self.assertFalse(changed["ok"])
        self.assertEqual(changed["errors"][0]["detail"], {"fields": ["email"]})

    def test_generic_save_cannot_close_record(self) -> None:
        result = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], dict(self.acme, status="closed_won"), ADMIN_USER_ID)
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "WORKFLOW_DECISION_REQUIRED")
        moved = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], dict(self.acme, status="draft_reviewed"), ADMIN_USER_ID)
        self.assertTrue(moved["ok"])
        self.assertEqual(moved["record"]["status"], "draft_reviewed")

    def test_insert_widens_then_writes_known_columns_only(self) -> None:
        result = self.writer.create(
            ADMIN_PROFILE_ID,
            "clients",
            {"name": "Umbrella", "email": "hq@umbrella.example", "draft_uploaded": True},
            ADMIN_USER_ID,
        )
        self.assertTrue(result["ok"], result["errors"])
        expected = [("alter_schema", "clients", name) for name, _, _ in AUDIT_COLUMNS] + [("insert", "clients")]
        self.assertEqual(self.store.calls, expected)
        self.assertNotIn("draft_uploaded", result["record"])
        stored = self.store.select("clients", {"id": result["record"]["id"]})[0]
        self.assertNotIn("draft_uploaded", stored)
        self.assertEqual(stored["created_by"], ADMIN_USER_ID)

    def test_json_round_tripped_snapshot_counts_as_unchanged(self) -> None:
        self.store.update(
            "clients",
            self.acme["id"],
            {"certified_at": datetime(2025, 6, 1, 9, tzinfo=timezone.utc), "contract_value": Decimal("12.50")},
        )
        self._revoke_edit("certified_at")
        self._revoke_edit("contract_value")
        row = self.store.select("clients", {"id": self.acme["id"]})[0]
        snapshot = json.loads(json.dumps(jsonable_encoder(row)))
        snapshot["phone"] = "+1 555 0142"

        result = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], snapshot, ADMIN_USER_ID)
        self.assertTrue(result["ok"], result["errors"])
        self.assertEqual(result["record"]["phone"], "+1 555 0142")

        snapshot["certified_at"] = "2025-07-01T09:00:00Z"
        denied = self.writer.update(ADMIN_PROFILE_ID, "clients", self.acme["id"], snapshot, ADMIN_USER_ID)
        self.assertFalse(denied["ok"])
        self.assertEqual(denied["errors"][0]["detail"], {"fields": ["certified_at"]})

    def test_delete(self) -> None:
        partner = self.store.select("channel_partners", {"country": "Australia"})[0]
        self.assertTrue(self.writer.delete(ADMIN_PROFILE_ID, "channel_partners", partner["id"])["ok"])
        self.assertEqual(self.store.select("channel_partners", {"id": partner["id"]}), [])
        missing = self.writer.delete(ADMIN_PROFILE_ID, "channel_partners", partner["id"])
        self.assertEqual(missing["errors"][0]["code"], "STORE_ERROR")
        denied = self.writer.delete(VIEWER_PROFILE_ID, "clients", self.acme["id"])
        self.assertEqual(denied["errors"][0]["code"], "PERMISSION_DENIED")


if __name__ == "__main__":
    unittest.main()
