import unittest
from unittest.mock import patch

from labclaim.core import rdp_access
from labclaim.errors import NotFoundError, PrivilegeError
from labclaim.models import DomainIdentity, ReconcileStatus


class _FakeGroup:
    """In-memory stand-in for the local Remote Desktop Users group."""

    def __init__(self, members=None):
        self.members = list(members or [])
        self.adds = []

    def list_group_members(self, group):
        return list(self.members)

    def add_group_member(self, group, member):
        self.adds.append((group, member))
        if member in self.members:
            return False
        self.members.append(member)
        return True


def _identity(username="jdoe"):
    return DomainIdentity(domain_netbios_name="CONTOSO", username=username)


class RdpAccessReconcilerTests(unittest.TestCase):
    def _patch_group(self, fake):
        p1 = patch("labclaim.core.rdp_access.windows.list_group_members", side_effect=fake.list_group_members)
        p2 = patch("labclaim.core.rdp_access.windows.add_group_member", side_effect=fake.add_group_member)
        p1.start()
        p2.start()
        self.addCleanup(p1.stop)
        self.addCleanup(p2.stop)

    def test_adds_identity_to_empty_group(self):
        fake = _FakeGroup()
        self._patch_group(fake)

        status = rdp_access.ensure_rdp_access(_identity())

        self.assertEqual(status, ReconcileStatus.RECONCILED)
        self.assertEqual(fake.members, ["CONTOSO\\jdoe"])
        self.assertEqual(fake.adds, [("Remote Desktop Users", "CONTOSO\\jdoe")])

    def test_second_run_is_already_present(self):
        fake = _FakeGroup(["BUILTIN\\Administrators"])
        self._patch_group(fake)

        first = rdp_access.ensure_rdp_access(_identity())
        second = rdp_access.ensure_rdp_access(_identity())

        self.assertEqual(first, ReconcileStatus.RECONCILED)
        self.assertEqual(second, ReconcileStatus.ALREADY_PRESENT)
        self.assertEqual(fake.members.count("CONTOSO\\jdoe"), 1)
        self.assertEqual(len(fake.adds), 1)

    def test_case_insensitive_match_is_noop(self):
        fake = _FakeGroup(["DOM\\Alice"])
        self._patch_group(fake)

        status = rdp_access.ensure_rdp_access(_identity("alice"))

        self.assertEqual(status, ReconcileStatus.ALREADY_PRESENT)
        self.assertEqual(fake.adds, [])

    def test_unqualified_member_does_not_match(self):
        fake = _FakeGroup(["LocalAdmin"])
        self._patch_group(fake)

        status = rdp_access.ensure_rdp_access(_identity("LocalAdmin"))

        self.assertEqual(status, ReconcileStatus.RECONCILED)
        self.assertIn("CONTOSO\\LocalAdmin", fake.members)
        self.assertIn("LocalAdmin", fake.members)

    def test_os_reporting_existing_member_is_already_present(self):
        with patch("labclaim.core.rdp_access.windows.list_group_members", return_value=[]), patch(
            "labclaim.core.rdp_access.windows.add_group_member", return_value=False
        ):
            status = rdp_access.ensure_rdp_access(_identity())
        self.assertEqual(status, ReconcileStatus.ALREADY_PRESENT)

    @patch("labclaim.core.rdp_access.windows.add_group_member")
    @patch("labclaim.core.rdp_access.windows.list_group_members", return_value=[])
    def test_dry_run_skips_add(self, list_mock, add_mock):
        status = rdp_access.ensure_rdp_access(_identity(), dry_run=True)
        self.assertEqual(status, ReconcileStatus.RECONCILED)
        add_mock.assert_not_called()

    @patch("labclaim.core.rdp_access.windows.list_group_members", side_effect=NotFoundError("no group"))
    def test_missing_group_propagates(self, list_mock):
        with self.assertRaises(NotFoundError):
            rdp_access.ensure_rdp_access(_identity())

    @patch("labclaim.core.rdp_access.windows.add_group_member", side_effect=PrivilegeError("denied"))
    @patch("labclaim.core.rdp_access.windows.list_group_members", return_value=[])
    def test_access_denied_propagates(self, list_mock, add_mock):
        with self.assertRaises(PrivilegeError):
            rdp_access.ensure_rdp_access(_identity())

    @patch("labclaim.core.rdp_access.windows.list_group_members", return_value=[])
    @patch("labclaim.core.rdp_access.windows.add_group_member", return_value=True)
    def test_group_name_comes_from_config(self, add_mock, list_mock):
        with patch.dict("labclaim.core.rdp_access.CONFIG", {"RDP_GROUP_NAME": "Remotedesktopbenutzer"}):
            rdp_access.ensure_rdp_access(_identity())
        list_mock.assert_called_once_with("Remotedesktopbenutzer")
        add_mock.assert_called_once_with("Remotedesktopbenutzer", "CONTOSO\\jdoe")


if __name__ == "__main__":
    unittest.main()
