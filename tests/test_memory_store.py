import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryRecordStore
from certflow.errors import FOREIGN_KEY_VIOLATION, UNDEFINED_TABLE, StoreError


class TestMemoryRecordStore(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryRecordStore()
        self.store.create_table(
            "teams",
            [{"name": "id", "data_type": "uuid", "is_nullable": False}, {"name": "name", "is_nullable": False}],
        )
        self.store.create_table(
            "players",
            [
                {"name": "id", "data_type": "uuid", "is_nullable": False},
                {"name": "name", "is_nullable": False},
                {"name": "team_id", "data_type": "uuid"},
                {"name": "rank", "data_type": "integer", "default": 0},
            ],
            foreign_keys={"team_id": "teams"},
        )

    def test_insert_fills_defaults_and_id(self) -> None:
        row = self.store.insert("players", {"name": "Ada"})
        self.assertTrue(row["id"])
        self.assertEqual(row["rank"], 0)
        self.assertIsNone(row["team_id"])

    def test_select_filters_and_order(self) -> None:
        a = self.store.insert("players", {"name": "B", "rank": 2})
        b = self.store.insert("players", {"name": "A", "rank": 1})
        self.assertEqual([r["name"] for r in self.store.select("players", order_by=["rank"])], ["A", "B"])
        self.assertEqual(len(self.store.select("players", {"id": [a["id"], b["id"]]})), 2)
        self.assertEqual(self.store.select("players", {"name": "B"})[0]["id"], a["id"])

    def test_foreign_key_violation(self) -> None:
        with self.assertRaises(StoreError) as ctx:
            self.store.insert("players", {"name": "Ada", "team_id": "missing"})
        self.assertEqual(ctx.exception.code, FOREIGN_KEY_VIOLATION)
        self.assertEqual(ctx.exception.constraint, "players_team_id_fkey")

    def test_unknown_table(self) -> None:
        with self.assertRaises(StoreError) as ctx:
            self.store.select("ghosts")
        self.assertEqual(ctx.exception.code, UNDEFINED_TABLE)

    def test_alter_schema_backfills_rows(self) -> None:
        row = self.store.insert("players", {"name": "Ada"})
        self.store.alter_schema("players", "created_at", "timestamptz", "now()")
        stored = self.store.select("players", {"id": row["id"]})[0]
        self.assertTrue(stored["created_at"].endswith("Z"))
        with self.assertRaises(StoreError):
            self.store.alter_schema("players", "created_at", "timestamptz", "now()")

    def test_sync_marks_foreign_keys_as_references(self) -> None:
        self.store.create_table(
            "field_metadata",
            [
                {"name": n}
                for n in (
                    "id", "table_name", "api_name", "display_label", "field_type", "is_required", "is_nullable",
                    "default_value", "display_order", "section", "width", "is_visible", "is_system_field",
                    "reference_table", "reference_display_field",
                )
            ],
        )
        result = self.store.rpc("sync_table_metadata", {"table_name_param": "players"})
        self.assertEqual(result, {"success": True, "message": "Metadata synced successfully"})
        rows = {r["api_name"]: r for r in self.store.select("field_metadata", {"table_name": "players"})}
        self.assertEqual(rows["team_id"]["field_type"], "reference")
        self.assertEqual(rows["team_id"]["reference_table"], "teams")
        self.assertEqual(rows["team_id"]["display_label"], "Team Id")
        self.assertEqual(rows["id"]["section"], "system")
        self.assertEqual(rows["name"]["section"], "basic")
        self.assertEqual(rows["rank"]["display_order"], 3)

    def test_unknown_rpc(self) -> None:
        with self.assertRaises(StoreError):
            self.store.rpc("drop_everything", {})


if __name__ == "__main__":
    unittest.main()
