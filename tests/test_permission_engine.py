import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.seed import create_business_tables, create_metadata_tables, grant
from app.stores import MemoryRecordStore
from permission_engine import PermissionEngine


class TestPermissionEngine(unittest.TestCase):
    def setUp(self) -> None:
        store = MemoryRecordStore()
        create_metadata_tables(store)
        create_business_tables(store)
        store.insert("profiles", {"id": "sales", "name": "Sales"})
        store.insert("profiles", {"id": "nobody", "name": "Nobody"})
        readers = store.insert("permission_sets", {"name": "Readers"})
        editors = store.insert("permission_sets", {"name": "Editors"})
        grant(store, readers["id"], "clients", ("read",), ["name", "email"])
        grant(store, editors["id"], "clients", ("update",), ["name"], edit_fields=True)
        store.insert("profile_permission_sets", {"profile_id": "sales", "permission_set_id": readers["id"]})
        store.insert("profile_permission_sets", {"profile_id": "sales", "permission_set_id": editors["id"]})
        store.insert("users", {"id": "u1", "email": "u1@example.com", "profile_id": "sales"})
        self.store = store
        self.readers_id = readers["id"]
        self.engine = PermissionEngine(store)

    def test_object_grants_union_across_sets(self) -> None:
        self.assertTrue(self.engine.can_object("sales", "clients", "read"))
        self.assertTrue(self.engine.can_object("sales", "clients", "update"))
        self.assertFalse(self.engine.can_object("sales", "clients", "create"))
        self.assertFalse(self.engine.can_object("sales", "clients", "delete"))

    def test_field_grants_union_across_sets(self) -> None:
        self.assertTrue(self.engine.can_field("sales", "clients", "name", "edit"))
        self.assertTrue(self.engine.can_field("sales", "clients", "email", "read"))
        self.assertFalse(self.engine.can_field("sales", "clients", "email", "edit"))

    def test_absence_means_no_access(self) -> None:
        self.assertFalse(self.engine.can_field("sales", "clients", "phone", "read"))
        self.assertFalse(self.engine.can_object("sales", "billing", "read"))
        self.assertFalse(self.engine.can_object("nobody", "clients", "read"))
        self.assertFalse(self.engine.can_object(None, "clients", "read"))
        self.assertFalse(self.engine.can_object("ghost", "clients", "read"))

    def test_unknown_action_is_refused(self) -> None:
        self.assertFalse(self.engine.can_object("sales", "clients", "archive"))
        self.assertFalse(self.engine.can_field("sales", "clients", "name", "delete"))

    def test_field_access_batch(self) -> None:
        access = self.engine.field_access("sales", "clients", ["name", "phone"])
        self.assertEqual(access["name"], {"read": True, "edit": True})
        self.assertEqual(access["phone"], {"read": False, "edit": False})

    def test_cache_until_invalidated(self) -> None:
        self.assertFalse(self.engine.can_object("sales", "billing", "read"))
        grant(self.store, self.readers_id, "billing", ("read",))
        self.assertFalse(self.engine.can_object("sales", "billing", "read"))
        self.engine.invalidate("sales")
        self.assertTrue(self.engine.can_object("sales", "billing", "read"))

    def test_profile_for_user(self) -> None:
        self.assertEqual(self.engine.profile_for_user("u1"), "sales")
        self.assertIsNone(self.engine.profile_for_user("u-missing"))
        self.assertIsNone(self.engine.profile_for_user(None))


if __name__ == "__main__":
    unittest.main()
