import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.seed import create_business_tables, create_metadata_tables
from app.stores import MemoryRecordStore
from certflow.errors import StoreError
from field_meta import FieldKind
from schema_registry import SchemaRegistry


class FlakyStore(MemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_selects = False

    def select(self, object_type, filters=None, order_by=None):
        if self.fail_selects:
            raise StoreError("connection reset", code="08006")
        return super().select(object_type, filters, order_by)


def _store() -> FlakyStore:
    store = FlakyStore()
    create_metadata_tables(store)
    create_business_tables(store)
    return store


class TestSchemaRegistry(unittest.TestCase):
    def test_no_descriptors_is_not_an_error(self) -> None:
        registry = SchemaRegistry(_store())
        self.assertEqual(registry.descriptors("clients"), [])
        labels = registry.labels("clients")
        self.assertEqual(labels["referred_by"], "Referred by")
        self.assertEqual(labels["iso_standard"], "Iso standard")

    def test_resync_bootstraps_once(self) -> None:
        store = _store()
        registry = SchemaRegistry(store)
        first = registry.resync("clients")
        self.assertTrue(first["ok"])
        self.assertTrue(first["synced"])
        self.assertEqual(first["count"], 12)
        second = registry.resync("clients")
        self.assertTrue(second["ok"])
        self.assertFalse(second["synced"])
        self.assertEqual(len(store.select("field_metadata", {"table_name": "clients"})), 12)

    def test_synced_descriptors_follow_section_rules(self) -> None:
        registry = SchemaRegistry(_store())
        registry.resync("clients")
        by_name = {d.api_name: d for d in registry.descriptors("clients")}
        self.assertEqual(by_name["id"].section, "system")
        self.assertTrue(by_name["id"].is_system_field)
        self.assertEqual(by_name["email"].section, "basic")
        self.assertEqual(by_name["iso_standard"].section, "details")
        self.assertEqual(by_name["referred_by"].kind, FieldKind.REFERENCE)
        self.assertEqual(by_name["referred_by"].reference_table, "channel_partners")
        self.assertEqual(by_name["referred_by"].display_label, "Referred By")
        self.assertTrue(by_name["name"].is_required)
        self.assertEqual(registry.label_for("clients", "referred_by"), "Referred By")

    def test_descriptors_are_ordered_and_hidden_filtered(self) -> None:
        store = _store()
        registry = SchemaRegistry(store)
        registry.resync("clients")
        names = [d.api_name for d in registry.descriptors("clients")]
        self.assertEqual(names[:3], ["id", "name", "email"])
        phone = store.select("field_metadata", {"table_name": "clients", "api_name": "phone"})[0]
        store.update("field_metadata", phone["id"], {"is_visible": False})
        registry.invalidate("clients")
        self.assertNotIn("phone", [d.api_name for d in registry.descriptors("clients")])
        self.assertIn("phone", [d.api_name for d in registry.descriptors("clients", include_hidden=True)])

    def test_resync_unknown_table_fails(self) -> None:
        result = SchemaRegistry(_store()).resync("unicorns")
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "SCHEMA_SYNC_FAILED")

    def test_refresh_replaces_cache_without_touching_held_lists(self) -> None:
        store = _store()
        registry = SchemaRegistry(store)
        registry.resync("clients")
        held = registry.descriptors("clients")
        row = store.select("field_metadata", {"table_name": "clients", "api_name": "email"})[0]
        store.update("field_metadata", row["id"], {"display_label": "Email Address"})
        self.assertEqual(registry.label_for("clients", "email"), "Email")
        result = registry.refresh("clients")
        self.assertTrue(result["ok"])
        self.assertEqual(registry.label_for("clients", "email"), "Email Address")
        self.assertEqual([d.display_label for d in held if d.api_name == "email"], ["Email"])

    def test_failed_refresh_keeps_previous_descriptors(self) -> None:
        store = _store()
        registry = SchemaRegistry(store)
        registry.resync("clients")
        store.fail_selects = True
        result = registry.refresh("clients")
        self.assertFalse(result["ok"])
        self.assertEqual(result["warnings"][0]["code"], "SCHEMA_REFRESH_FAILED")
        self.assertEqual(len(registry.descriptors("clients")), 12)

    def test_store_failure_degrades_to_raw_labels(self) -> None:
        store = _store()
        store.fail_selects = True
        registry = SchemaRegistry(store)
        self.assertEqual(registry.descriptors("clients"), [])
        self.assertEqual(registry.labels("clients")["audit_date"], "Audit date")


if __name__ == "__main__":
    unittest.main()
