import unittest

from asset_control.tests.support import DatabaseTestCase

from sqlalchemy import update

from asset_control.models import Principal
from asset_control.schemas.access import Action, Allow, Deny, DenyReason, Resource
from asset_control.services.access_service import authorize
from asset_control.services.permission_service import create_role, update_role_permissions
from asset_control.services.principal_service import update_principal


class AccessDecisionTests(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.editor_role = create_role(self.db, "editor", {"assets": {"view": True, "edit": True, "add": False}})
        self.db.commit()
        self.editor = self.add_principal("editor-user", role_id=self.editor_role.RoleID)

    def test_admin_is_allowed_everything(self):
        admin = self.add_principal("admin", is_admin=True)
        for resource in Resource:
            for action in Action:
                decision = authorize(self.db, admin.UserID, resource, action)
                self.assertIsInstance(decision, Allow)
                self.assertTrue(decision.viaAdmin)

    def test_admin_bypasses_an_empty_role(self):
        empty_role = create_role(self.db, "empty", {})
        self.db.commit()
        admin = self.add_principal("admin2", is_admin=True, role_id=empty_role.RoleID)
        self.assertTrue(authorize(self.db, admin.UserID, Resource.USERS, Action.DELETE).allowed)

    def test_principal_without_role_is_denied(self):
        user = self.add_principal("loner")
        for resource in Resource:
            for action in Action:
                decision = authorize(self.db, user.UserID, resource, action)
                self.assertIsInstance(decision, Deny)
                self.assertEqual(decision.reason, DenyReason.NO_ROLE_PERMISSIONS)
                self.assertEqual(decision.message, "no role permissions configured")

    def test_editor_cannot_add_assets(self):
        decision = authorize(self.db, self.editor.UserID, "assets", "add")
        self.assertIsInstance(decision, Deny)
        self.assertEqual(decision.reason, DenyReason.ACTION_NOT_PERMITTED)
        self.assertEqual(decision.message, "action not permitted")
        self.assertEqual(decision.resource, Resource.ASSETS)
        self.assertEqual(decision.action, Action.ADD)

    def test_editor_can_edit_assets(self):
        decision = authorize(self.db, self.editor.UserID, Resource.ASSETS, Action.EDIT)
        self.assertIsInstance(decision, Allow)
        self.assertFalse(decision.viaAdmin)

    def test_resource_missing_from_matrix_is_denied(self):
        decision = authorize(self.db, self.editor.UserID, Resource.LICENSES, Action.VIEW)
        self.assertEqual(decision.reason, DenyReason.RESOURCE_NOT_PERMITTED)
        self.assertEqual(decision.message, "resource not permitted")

    def test_action_missing_from_resource_grants_is_denied(self):
        decision = authorize(self.db, self.editor.UserID, Resource.ASSETS, Action.DELETE)
        self.assertEqual(decision.reason, DenyReason.ACTION_NOT_PERMITTED)

    def test_unknown_principal_is_denied(self):
        decision = authorize(self.db, 4040, Resource.ASSETS, Action.VIEW)
        self.assertIsInstance(decision, Deny)
        self.assertEqual(decision.reason, DenyReason.UNKNOWN_PRINCIPAL)

    def test_unknown_permission_name_is_a_programming_error(self):
        with self.assertRaises(ValueError):
            authorize(self.db, self.editor.UserID, "asset", "view")
        with self.assertRaises(ValueError):
            authorize(self.db, self.editor.UserID, "assets", "approve")

    def test_role_change_applies_on_next_check(self):
        self.assertFalse(authorize(self.db, self.editor.UserID, Resource.ASSETS, Action.ADD).allowed)
        update_role_permissions(
            self.db,
            self.editor_role.RoleID,
            {"assets": {"view": True, "edit": True, "add": True}},
        )
        self.db.commit()
        self.assertTrue(authorize(self.db, self.editor.UserID, Resource.ASSETS, Action.ADD).allowed)

    def test_revoked_admin_flag_is_read_from_storage_not_cached_object(self):
        admin = self.add_principal("former-admin", is_admin=True)
        self.assertTrue(authorize(self.db, admin.UserID, Resource.USERS, Action.EDIT).allowed)

        # Bulk UPDATE leaves the loaded Principal in the identity map with IsAdmin still True.
        self.db.execute(
            update(Principal)
            .where(Principal.UserID == admin.UserID)
            .values(IsAdmin=False)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.assertTrue(admin.IsAdmin)

        decision = authorize(self.db, admin.UserID, Resource.USERS, Action.EDIT)
        self.assertIsInstance(decision, Deny)
        self.assertEqual(decision.reason, DenyReason.NO_ROLE_PERMISSIONS)

    def test_granting_admin_applies_on_next_check(self):
        self.assertFalse(authorize(self.db, self.editor.UserID, Resource.USERS, Action.VIEW).allowed)
        update_principal(self.db, self.editor.UserID, is_admin=True)
        self.assertTrue(authorize(self.db, self.editor.UserID, Resource.USERS, Action.VIEW).allowed)

    def test_removing_role_denies_on_next_check(self):
        update_principal(self.db, self.editor.UserID, role_id=None)
        decision = authorize(self.db, self.editor.UserID, Resource.ASSETS, Action.VIEW)
        self.assertEqual(decision.reason, DenyReason.NO_ROLE_PERMISSIONS)


if __name__ == "__main__":
    unittest.main()
