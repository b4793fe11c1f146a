import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.context import build_context
from app.seed import ADMIN_PROFILE_ID, VIEWER_PROFILE_ID, grant, seed_demo
from app.stores import MemoryRecordStore
from certflow.errors import StoreError
from record_page import compose_record_list, compose_record_page, lookup_options


class MetadataOutageStore(MemoryRecordStore):
    metadata_down = False

    def select(self, object_type, filters=None, order_by=None):
        if self.metadata_down and object_type == "field_metadata":
            raise StoreError("connection reset", code="08006")
        return super().select(object_type, filters, order_by)


def _fields(page: dict) -> dict:
    out = {}
    for section in page["sections"]:
        for block in section["blocks"]:
            if block["block_type"] == "field":
                out[block["field"]] = block
    return out


class TestRecordPage(unittest.TestCase):
    def setUp(self) -> None:
        self.store = seed_demo()
        self.ctx = build_context(self.store, workflow_objects=["clients"])
        self.acme = self.store.select("clients", {"email": "quality@acme.example"})[0]

    def test_read_view_sections_in_layout_order(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="information")
        self.assertTrue(page["ok"])
        self.assertEqual(page["layout_state"], "ready")
        self.assertEqual([s["name"] for s in page["sections"]], ["basic", "certification", "details"])
        basic = [b["field"] for b in page["sections"][0]["blocks"]]
        self.assertEqual(basic, ["name", "email", "phone", "status"])
        fields = _fields(page)
        self.assertEqual(fields["status"]["display"], "Draft Approved")
        self.assertEqual(fields["phone"]["display"], "N/A")
        self.assertEqual(fields["audit_date"]["display"], "June 12, 2025")
        self.assertEqual(fields["referred_by"]["display"], "Northwind Partners")
        self.assertEqual(fields["is_active"]["display"], "Yes")
        self.assertTrue(all(f["mode"] == "read" for f in fields.values()))

    def test_locale_changes_date_display(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="information", locale="en-GB")
        self.assertEqual(_fields(page)["audit_date"]["display"], "12 June 2025")

    def test_admin_edit_view_uses_controls_per_kind(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="information", editing=True)
        self.assertTrue(page["editing"])
        fields = _fields(page)
        self.assertEqual(fields["name"]["control"], "text")
        self.assertEqual(fields["status"]["control"], "select")
        self.assertEqual(fields["iso_standard"]["control"], "select")
        self.assertEqual(fields["contract_value"]["control"], "number")
        self.assertEqual(fields["is_active"]["control"], "boolean")
        self.assertEqual(fields["audit_date"]["control"], "date")
        self.assertEqual(fields["referred_by"]["control"], "typeahead")
        self.assertEqual(len(fields["referred_by"]["options"]), 2)
        self.assertNotIn("closed_won", [o["value"] for o in fields["status"]["options"]])

    def test_viewer_sees_read_only_even_when_editing_requested(self) -> None:
        page = compose_record_page(self.ctx, VIEWER_PROFILE_ID, "clients", self.acme["id"], tab="information", editing=True)
        self.assertTrue(page["ok"])
        self.assertFalse(page["editing"])
        fields = _fields(page)
        self.assertTrue(fields)
        self.assertTrue(all(f["mode"] == "read" for f in fields.values()))
        self.assertFalse(page["affordances"]["can_edit"])
        self.assertFalse(page["workflow"]["can_change"])

    def test_deleted_reference_shows_raw_key(self) -> None:
        partner_id = self.acme["referred_by"]
        self.store.delete("channel_partners", partner_id)
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="information")
        self.assertEqual(_fields(page)["referred_by"]["display"], str(partner_id))

    def test_workflow_progress_included(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"])
        self.assertEqual(page["workflow"]["current"], "draft_approved")
        self.assertTrue(page["workflow"]["can_change"])
        partner = self.store.select("channel_partners", {"country": "Germany"})[0]
        other = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "channel_partners", partner["id"])
        self.assertIsNone(other["workflow"])

    def test_related_list_on_billing_tab(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="billing")
        block = page["sections"][0]["blocks"][0]
        self.assertEqual(block["block_type"], "related_list")
        self.assertEqual(block["label"], "Invoices")
        self.assertEqual([r["name"] for r in block["rows"]], ["INV-1001"])
        self.assertEqual([t["id"] for t in page["tabs"]], ["information", "billing"])

    def test_unconfigured_tab_has_hint(self) -> None:
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", self.acme["id"], tab="notes")
        self.assertEqual(page["layout_state"], "unconfigured")
        self.assertTrue(page["hint"])
        self.assertEqual(page["sections"], [])

    def test_table_without_metadata_falls_back_to_raw_columns(self) -> None:
        self.store.create_table(
            "heroes",
            [
                {"name": "id", "data_type": "uuid", "is_nullable": False},
                {"name": "name", "data_type": "text", "is_nullable": False},
                {"name": "secret_identity", "data_type": "text"},
            ],
        )
        full = self.store.select("permission_sets", {"name": "Full Access"})[0]
        grant(self.store, full["id"], "heroes", ("read", "update"), ["id", "name", "secret_identity"], edit_fields=True)
        hero = self.store.insert("heroes", {"name": "Nightjar"})
        page = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "heroes", hero["id"])
        self.assertTrue(page["ok"])
        self.assertEqual(page["layout_state"], "unconfigured")
        labels = [f["label"] for f in page["fields"]]
        self.assertEqual(labels, ["Id", "Name", "Secret identity"])

    def test_unreadable_field_settings_warn_and_show_raw_columns(self) -> None:
        store = MetadataOutageStore()
        seed_demo(store)
        ctx = build_context(store, workflow_objects=["clients"])
        acme = store.select("clients", {"email": "quality@acme.example"})[0]
        store.metadata_down = True

        page = compose_record_page(ctx, ADMIN_PROFILE_ID, "clients", acme["id"])
        self.assertTrue(page["ok"], page["errors"])
        unavailable = [w for w in page["warnings"] if w["code"] == "SCHEMA_UNAVAILABLE"]
        self.assertEqual(len(unavailable), 1)
        self.assertTrue(unavailable[0]["detail"]["retryable"])
        names = [f["field"] for f in page["fields"]]
        self.assertIn("email", names)
        self.assertIn("Email", [f["label"] for f in page["fields"]])

        listing = compose_record_list(ctx, ADMIN_PROFILE_ID, "clients")
        self.assertTrue(listing["ok"], listing["errors"])
        self.assertIn("SCHEMA_UNAVAILABLE", [w["code"] for w in listing["warnings"]])
        self.assertIn("Acme Foods", [row["cells"]["name"] for row in listing["rows"]])

    def test_errors(self) -> None:
        missing = compose_record_page(self.ctx, ADMIN_PROFILE_ID, "clients", "no-such-id")
        self.assertEqual(missing["errors"][0]["code"], "RECORD_NOT_FOUND")
        denied = compose_record_page(self.ctx, None, "clients", self.acme["id"])
        self.assertEqual(denied["errors"][0]["code"], "PERMISSION_DENIED")

    def test_record_list(self) -> None:
        listing = compose_record_list(self.ctx, VIEWER_PROFILE_ID, "clients")
        self.assertTrue(listing["ok"])
        self.assertFalse(listing["can_create"])
        self.assertIn({"name": "email", "label": "Email"}, listing["columns"])
        rows = {row["cells"]["name"]: row for row in listing["rows"]}
        self.assertEqual(rows["Acme Foods"]["cells"]["referred_by"], "Northwind Partners")
        self.assertEqual(rows["Globex"]["cells"]["status"], "Certificate Sent")
        self.assertEqual(rows["Globex"]["cells"]["referred_by"], "N/A")

    def test_lookup_options_match_secondary_text(self) -> None:
        result = lookup_options(self.ctx, ADMIN_PROFILE_ID, "channel_partners", "germ")
        self.assertEqual([o["label"] for o in result["options"]], ["Northwind Partners"])
        everyone = lookup_options(self.ctx, ADMIN_PROFILE_ID, "channel_partners", "")
        self.assertEqual([o["label"] for o in everyone["options"]], ["Northwind Partners", "Southern Cross Advisory"])


if __name__ == "__main__":
    unittest.main()
