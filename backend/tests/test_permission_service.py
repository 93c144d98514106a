import unittest
from flask import Flask

from posfleet.errors import ValidationError
from posfleet.extensions import db
from posfleet.models import RolePermissionOverride, User
from posfleet.permissions import DEFAULT_ROLE_PERMISSIONS, Role, freeze_overrides, resolve
from posfleet.services import permission_service


class PermissionResolutionTests(unittest.TestCase):
    def test_defaults_decide_without_overrides(self):
        self.assertTrue(resolve(Role.TECHNICIAN, "WORK_ASSIGNMENTS"))
        self.assertFalse(resolve(Role.CS_AGENT, "TRANSITION_MACHINE"))
        self.assertTrue(resolve(Role.BRANCH_MANAGER, "PAY_DEBTS"))
        self.assertFalse(resolve(Role.MANAGEMENT, "MANAGE_PERMISSIONS"))

    def test_unknown_role_and_code_hold_nothing(self):
        self.assertFalse(resolve("JANITOR", "VIEW_TRANSFERS"))
        self.assertFalse(resolve(Role.SUPER_ADMIN, "LAUNCH_ROCKETS"))

    def test_override_wins_in_both_directions(self):
        overrides = {
            (Role.CS_AGENT, "TRANSITION_MACHINE"): True,
            (Role.TECHNICIAN, "WORK_ASSIGNMENTS"): False,
        }
        self.assertTrue(resolve(Role.CS_AGENT, "TRANSITION_MACHINE", overrides))
        self.assertFalse(resolve(Role.TECHNICIAN, "WORK_ASSIGNMENTS", overrides))

    def test_default_matrix_is_read_only(self):
        with self.assertRaises(TypeError):
            DEFAULT_ROLE_PERMISSIONS[Role.CS_AGENT] = frozenset()


class PermissionOverrideTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from posfleet import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(RolePermissionOverride).delete()
        db.session.query(User).delete()
        db.session.commit()

        self.agent = User(username="agent", password_hash="x", role=Role.CS_AGENT, is_active=True)
        db.session.add(self.agent)
        db.session.commit()

    def test_grant_and_reset(self):
        self.assertFalse(permission_service.user_has_permission(self.agent, "TRANSITION_MACHINE"))

        permission_service.set_override(Role.CS_AGENT, "TRANSITION_MACHINE", True)
        db.session.commit()
        self.assertTrue(permission_service.user_has_permission(self.agent, "TRANSITION_MACHINE"))
        self.assertIn("TRANSITION_MACHINE", permission_service.get_role_permissions(Role.CS_AGENT))

        self.assertTrue(permission_service.clear_override(Role.CS_AGENT, "TRANSITION_MACHINE"))
        db.session.commit()
        self.assertFalse(permission_service.user_has_permission(self.agent, "TRANSITION_MACHINE"))
        self.assertFalse(permission_service.clear_override(Role.CS_AGENT, "TRANSITION_MACHINE"))

    def test_revoke_default(self):
        permission_service.set_override(Role.CS_AGENT, "VIEW_DEBTS", False)
        db.session.commit()

        with self.assertRaises(permission_service.PermissionDeniedError):
            permission_service.require_permission(self.agent, "VIEW_DEBTS")

    def test_set_override_updates_existing_row(self):
        permission_service.set_override(Role.CS_AGENT, "PAY_DEBTS", True)
        db.session.commit()
        permission_service.set_override(Role.CS_AGENT, "PAY_DEBTS", False)
        db.session.commit()

        rows = db.session.query(RolePermissionOverride).filter_by(role=Role.CS_AGENT).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(freeze_overrides(rows), {(Role.CS_AGENT, "PAY_DEBTS"): False})

    def test_super_admin_keeps_manage_permissions(self):
        with self.assertRaises(ValidationError):
            permission_service.set_override(Role.SUPER_ADMIN, "MANAGE_PERMISSIONS", False)

    def test_unknown_role_or_code_rejected(self):
        with self.assertRaises(ValidationError):
            permission_service.set_override("JANITOR", "VIEW_DEBTS", True)
        with self.assertRaises(ValidationError):
            permission_service.set_override(Role.CS_AGENT, "LAUNCH_ROCKETS", True)


if __name__ == "__main__":
    unittest.main()
