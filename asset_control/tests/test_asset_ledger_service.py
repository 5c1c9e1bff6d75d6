import unittest
from datetime import date, timedelta

from asset_control.tests.support import DatabaseTestCase

from asset_control.models import Asset, AssetStatus
from asset_control.services.activity_service import list_activities
from asset_control.services.asset_ledger_service import (
    SYSTEM_PRINCIPAL_ID,
    attach_identity_tag,
    checkin,
    checkout,
    delete_asset,
    mark_overdue,
    register_asset,
    serialize_asset,
)


class AssetLedgerTests(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.holder = self.add_principal("jdoe", user_id=42, first_name="Jane", last_name="Doe")

    def test_register_creates_available_asset(self):
        asset = register_asset(self.db, "AT-100", "ThinkPad T14", serial_number="SN-1")
        self.assertEqual(asset.Status, AssetStatus.AVAILABLE)
        self.assertIsNone(asset.AssignedTo)
        actions = [row.Action for row in list_activities(self.db, item_type="asset", item_id=asset.AssetID)]
        self.assertEqual(actions, ["create"])

    def test_register_rejects_duplicate_tag(self):
        register_asset(self.db, "AT-101", "Monitor")
        with self.assertRaises(ValueError):
            register_asset(self.db, "AT-101", "Another monitor")

    def test_register_with_identity_tag_checks_out_to_system_principal(self):
        asset = register_asset(self.db, "AT-102", "Galaxy Tab", identity_tag=" KNOX-102 ")
        self.assertEqual(asset.Status, AssetStatus.DEPLOYED)
        self.assertEqual(asset.AssignedTo, SYSTEM_PRINCIPAL_ID)
        self.assertEqual(asset.IdentityTag, "KNOX-102")
        history = list_activities(self.db, item_type="asset", item_id=asset.AssetID)
        self.assertEqual([row.Action for row in history], ["create", "checkout"])
        self.assertEqual(history[-1].Notes, "Asset automatically checked out to identity tag: KNOX-102")
        self.assert_ledger_consistent()

    def test_register_with_blank_identity_tag_stays_available(self):
        asset = register_asset(self.db, "AT-103", "Galaxy Tab", identity_tag="   ")
        self.assertEqual(asset.Status, AssetStatus.AVAILABLE)
        self.assertIsNone(asset.IdentityTag)

    def test_checkout_available_asset(self):
        asset = self.add_asset("AT-1")
        result = checkout(self.db, asset.AssetID, 42)
        self.assertIsNotNone(result)
        self.assertEqual(result.Status, AssetStatus.DEPLOYED)
        self.assertEqual(result.AssignedTo, 42)
        self.assertEqual(result.CheckoutDate, date.today())
        note = list_activities(self.db, item_type="asset", item_id=asset.AssetID)[-1].Notes
        self.assertIn("checked out to Jane Doe", note)
        self.assert_ledger_consistent()

    def test_checkout_records_expected_checkin_date(self):
        asset = self.add_asset("AT-2")
        due = date.today() + timedelta(days=14)
        result = checkout(self.db, asset.AssetID, 42, expected_checkin_date=due)
        self.assertEqual(result.ExpectedCheckinDate, due)

    def test_checkout_on_deployed_asset_is_a_no_op(self):
        asset = self.add_asset("AT-3")
        other = self.add_principal("other")
        checkout(self.db, asset.AssetID, 42)
        before = serialize_asset(self.db.get(Asset, asset.AssetID))

        self.assertIsNone(checkout(self.db, asset.AssetID, other.UserID))
        after = serialize_asset(self.db.get(Asset, asset.AssetID, populate_existing=True))
        self.assertEqual(before, after)
        self.assertEqual(after["assignedTo"], 42)

    def test_checkout_declined_from_pending_and_archived(self):
        for status in (AssetStatus.PENDING, AssetStatus.ARCHIVED, AssetStatus.OVERDUE):
            asset = self.add_asset(f"AT-{status}", status=status)
            self.assertIsNone(checkout(self.db, asset.AssetID, 42))
            self.assertEqual(self.db.get(Asset, asset.AssetID).Status, status)

    def test_checkout_to_unknown_principal_is_declined(self):
        asset = self.add_asset("AT-4")
        self.assertIsNone(checkout(self.db, asset.AssetID, 9999))
        self.assertEqual(self.db.get(Asset, asset.AssetID).Status, AssetStatus.AVAILABLE)

    def test_checkout_unknown_asset_is_declined(self):
        self.assertIsNone(checkout(self.db, 12345, 42))

    def test_checkin_on_available_asset_is_a_no_op(self):
        asset = self.add_asset("AT-5")
        self.assertIsNone(checkin(self.db, asset.AssetID))
        self.assertEqual(self.db.get(Asset, asset.AssetID).Status, AssetStatus.AVAILABLE)

    def test_checkout_then_checkin_restores_available(self):
        asset = self.add_asset("AT-6")
        checkout(self.db, asset.AssetID, 42, expected_checkin_date=date.today() + timedelta(days=3))
        result = checkin(self.db, asset.AssetID)
        self.assertEqual(result.Status, AssetStatus.AVAILABLE)
        self.assertIsNone(result.AssignedTo)
        self.assertIsNone(result.CheckoutDate)
        self.assertIsNone(result.ExpectedCheckinDate)
        actions = [row.Action for row in list_activities(self.db, item_type="asset", item_id=asset.AssetID)]
        self.assertEqual(actions, ["checkout", "checkin"])
        self.assert_ledger_consistent()

    def test_checkin_from_overdue(self):
        asset = self.add_asset("AT-7")
        checkout(self.db, asset.AssetID, 42, expected_checkin_date=date.today() - timedelta(days=1))
        mark_overdue(self.db)
        self.assertEqual(self.db.get(Asset, asset.AssetID, populate_existing=True).Status, AssetStatus.OVERDUE)
        result = checkin(self.db, asset.AssetID)
        self.assertEqual(result.Status, AssetStatus.AVAILABLE)
        self.assert_ledger_consistent()

    def test_checkin_clears_identity_tag(self):
        asset = self.add_asset("AT-8")
        attach_identity_tag(self.db, asset.AssetID, "KNOX-1")
        result = checkin(self.db, asset.AssetID)
        self.assertIsNone(result.IdentityTag)

    def test_attach_identity_tag_checks_out_to_system_principal(self):
        asset = self.add_asset("AT-9")
        result = attach_identity_tag(self.db, asset.AssetID, " KNOX-9 ")
        self.assertEqual(result.Status, AssetStatus.DEPLOYED)
        self.assertEqual(result.AssignedTo, SYSTEM_PRINCIPAL_ID)
        self.assertEqual(result.IdentityTag, "KNOX-9")
        notes = [row.Notes for row in list_activities(self.db, item_type="asset", item_id=asset.AssetID)]
        self.assertIn("Asset automatically checked out to identity tag: KNOX-9", notes)
        self.assert_ledger_consistent()

    def test_attach_same_identity_tag_is_idempotent(self):
        asset = self.add_asset("AT-10")
        attach_identity_tag(self.db, asset.AssetID, "KNOX-10")
        count = len(list_activities(self.db, item_type="asset", item_id=asset.AssetID))
        before = serialize_asset(self.db.get(Asset, asset.AssetID))

        result = attach_identity_tag(self.db, asset.AssetID, "KNOX-10")
        self.assertEqual(serialize_asset(result), before)
        self.assertEqual(len(list_activities(self.db, item_type="asset", item_id=asset.AssetID)), count)

    def test_changing_tag_on_deployed_asset_keeps_holder(self):
        asset = self.add_asset("AT-11")
        checkout(self.db, asset.AssetID, 42)
        result = attach_identity_tag(self.db, asset.AssetID, "KNOX-11")
        self.assertEqual(result.Status, AssetStatus.DEPLOYED)
        self.assertEqual(result.AssignedTo, 42)
        self.assertEqual(result.IdentityTag, "KNOX-11")

    def test_tag_on_archived_asset_does_not_change_state(self):
        asset = self.add_asset("AT-12", status=AssetStatus.ARCHIVED)
        result = attach_identity_tag(self.db, asset.AssetID, "KNOX-12")
        self.assertEqual(result.Status, AssetStatus.ARCHIVED)
        self.assertIsNone(result.AssignedTo)
        self.assertEqual(result.IdentityTag, "KNOX-12")
        self.assert_ledger_consistent()

    def test_blank_tag_clears_without_lifecycle_change(self):
        asset = self.add_asset("AT-13")
        checkout(self.db, asset.AssetID, 42)
        attach_identity_tag(self.db, asset.AssetID, "KNOX-13")
        result = attach_identity_tag(self.db, asset.AssetID, "  ")
        self.assertIsNone(result.IdentityTag)
        self.assertEqual(result.Status, AssetStatus.DEPLOYED)
        self.assertEqual(result.AssignedTo, 42)

    def test_attach_tag_unknown_asset(self):
        self.assertIsNone(attach_identity_tag(self.db, 777, "KNOX"))

    def test_mark_overdue_only_touches_past_due_deployments(self):
        late = self.add_asset("AT-14")
        on_time = self.add_asset("AT-15")
        open_ended = self.add_asset("AT-16")
        checkout(self.db, late.AssetID, 42, expected_checkin_date=date(2026, 1, 1))
        checkout(self.db, on_time.AssetID, 42, expected_checkin_date=date(2026, 3, 1))
        checkout(self.db, open_ended.AssetID, 42)

        changed = mark_overdue(self.db, today=date(2026, 2, 1))
        self.assertEqual([asset.AssetID for asset in changed], [late.AssetID])
        self.assertEqual(changed[0].AssignedTo, 42)
        self.assertEqual(self.db.get(Asset, on_time.AssetID).Status, AssetStatus.DEPLOYED)
        self.assert_ledger_consistent()

    def test_delete_writes_activity_that_outlives_the_asset(self):
        asset = self.add_asset("AT-17")
        checkout(self.db, asset.AssetID, 42)
        self.assertTrue(delete_asset(self.db, asset.AssetID, actor_id=SYSTEM_PRINCIPAL_ID))
        self.assertIsNone(self.db.get(Asset, asset.AssetID))
        history = list_activities(self.db, item_type="asset", item_id=asset.AssetID)
        self.assertEqual([row.Action for row in history], ["checkout", "delete"])
        self.assertIn("deleted while deployed", history[-1].Notes)

    def test_delete_unknown_asset(self):
        self.assertFalse(delete_asset(self.db, 31337))


if __name__ == "__main__":
    unittest.main()
