import unittest

from equipment_portal.core.permissions import (
    Capability,
    Role,
    capabilities_for,
    has_capability,
    roles_with,
)
from equipment_portal.crud.requests import can_transition


class TestRoleCapabilities(unittest.TestCase):
    def test_borrowers_can_request_but_not_decide(self):
        for role in (Role.STUDENT, Role.STAFF):
            self.assertTrue(has_capability(role.value, Capability.REQUEST_CREATE))
            self.assertTrue(has_capability(role.value, Capability.EQUIPMENT_READ))
            self.assertFalse(has_capability(role.value, Capability.REQUEST_DECIDE))
            self.assertFalse(has_capability(role.value, Capability.EQUIPMENT_MANAGE))
            self.assertFalse(has_capability(role.value, Capability.STATS_READ))

    def test_admin_manages_but_does_not_borrow(self):
        self.assertTrue(has_capability("admin", Capability.EQUIPMENT_MANAGE))
        self.assertTrue(has_capability("admin", Capability.REQUEST_DECIDE))
        self.assertTrue(has_capability("admin", Capability.REQUEST_RETURN))
        self.assertTrue(has_capability("admin", Capability.STATS_READ))
        self.assertFalse(has_capability("admin", Capability.REQUEST_CREATE))

    def test_unknown_role_has_no_capabilities(self):
        self.assertEqual(capabilities_for("janitor"), frozenset())
        self.assertEqual(capabilities_for(""), frozenset())

    def test_roles_with(self):
        self.assertEqual(roles_with(Capability.REQUEST_CREATE), {Role.STUDENT, Role.STAFF})
        self.assertEqual(roles_with(Capability.REQUEST_DECIDE), {Role.ADMIN})
        self.assertEqual(roles_with(Capability.EQUIPMENT_READ), set(Role))


class TestTransitions(unittest.TestCase):
    def test_legal_transitions(self):
        self.assertTrue(can_transition("pending", "approved"))
        self.assertTrue(can_transition("pending", "rejected"))
        self.assertTrue(can_transition("approved", "returned"))

    def test_illegal_transitions(self):
        self.assertFalse(can_transition("pending", "returned"))
        self.assertFalse(can_transition("approved", "rejected"))
        self.assertFalse(can_transition("approved", "approved"))
        for terminal in ("rejected", "returned"):
            for target in ("pending", "approved", "rejected", "returned"):
                self.assertFalse(can_transition(terminal, target), f"{terminal} -> {target}")


if __name__ == "__main__":
    unittest.main()
