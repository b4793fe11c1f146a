import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.seed import seed_demo
import validation_catalog as vc


class TestRuleDefinitions(unittest.TestCase):
    def test_catalog_has_ten_types(self) -> None:
        self.assertEqual(len(vc.VALIDATION_TYPES), 10)
        self.assertTrue(vc.needs_value("min_length"))
        self.assertFalse(vc.needs_value("email"))
        self.assertEqual(vc.default_message("max_length", "Name", 80), "Name cannot exceed 80 characters")

    def test_valid_rule(self) -> None:
        rule = {"field": "name", "type": "min_length", "value": "3", "message": "Too short"}
        self.assertEqual(vc.validate_rule_definition(rule, ["name", "email"]), [])

    def test_rule_problems(self) -> None:
        def codes(rule, known=None):
            return [e["code"] for e in vc.validate_rule_definition(rule, known)]

        self.assertEqual(codes({"field": "name", "type": "nope", "message": "m"}), ["RULE_TYPE_INVALID"])
        self.assertEqual(codes({"field": "", "type": "email", "message": ""}), ["RULE_FIELD_REQUIRED", "RULE_MESSAGE_REQUIRED"])
        self.assertEqual(codes({"field": "ghost", "type": "email", "message": "m"}, ["name"]), ["RULE_FIELD_UNKNOWN"])
        self.assertEqual(codes({"field": "name", "type": "max_value", "message": "m"}), ["RULE_VALUE_REQUIRED"])
        self.assertEqual(codes({"field": "name", "type": "max_value", "value": "lots", "message": "m"}), ["RULE_VALUE_INVALID"])
        self.assertEqual(codes({"field": "name", "type": "regex", "value": "([a-z", "message": "m"}), ["RULE_VALUE_INVALID"])

    def test_value_requirement_follows_type(self) -> None:
        self.assertTrue(vc.needs_value("min_length"))
        self.assertFalse(vc.needs_value("email"))
        self.assertFalse(vc.needs_value(["email"]))
        missing = vc.validate_rule_definition({"field": "name", "type": "min_length", "message": "m"})
        self.assertIn("RULE_VALUE_REQUIRED", [e["code"] for e in missing])
        odd_type = vc.validate_rule_definition({"field": "name", "type": ["email"], "message": "m"})
        self.assertIn("RULE_TYPE_INVALID", [e["code"] for e in odd_type])


class TestRuleStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.store = seed_demo()

    def test_add_toggle_delete(self) -> None:
        added = vc.add_rule(self.store, "clients", {"field": "email", "type": "email", "message": " Bad email "})
        self.assertTrue(added["ok"])
        rule = added["rule"]
        self.assertEqual(rule["message"], "Bad email")
        self.assertTrue(rule["enabled"])
        self.assertIsNone(rule["value"])

        toggled = vc.toggle_rule(self.store, "clients", rule["id"])
        self.assertFalse(toggled["rule"]["enabled"])
        self.assertEqual([r["id"] for r in vc.list_rules(self.store, "clients")], [rule["id"]])
        self.assertEqual(vc.list_rules(self.store, "channel_partners"), [])

        wrong_object = vc.toggle_rule(self.store, "channel_partners", rule["id"])
        self.assertEqual(wrong_object["errors"][0]["code"], "RULE_NOT_FOUND")

        self.assertTrue(vc.delete_rule(self.store, "clients", rule["id"])["ok"])
        self.assertEqual(vc.list_rules(self.store, "clients"), [])
        self.assertFalse(vc.delete_rule(self.store, "clients", rule["id"])["ok"])

    def test_blank_message_gets_default_wording(self) -> None:
        added = vc.add_rule(self.store, "clients", {"field": "email", "type": "email", "message": "  "})
        self.assertTrue(added["ok"], added["errors"])
        self.assertEqual(added["rule"]["message"], "email must be a valid email address")

        sized = vc.add_rule(self.store, "clients", {"field": "name", "type": "min_length", "value": 3})
        self.assertTrue(sized["ok"], sized["errors"])
        self.assertEqual(sized["rule"]["message"], vc.default_message("min_length", "name", 3))

    def test_invalid_rule_not_stored(self) -> None:
        result = vc.add_rule(self.store, "clients", {"field": "name", "type": "min_length", "message": "m"})
        self.assertFalse(result["ok"])
        self.assertEqual(vc.list_rules(self.store, "clients"), [])


if __name__ == "__main__":
    unittest.main()
