import os
import stat
import subprocess
import tempfile
import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

from labclaim.core.enrollment import build_task_definition
from labclaim.errors import NotFoundError, PowerShellError, PrivilegeError
from labclaim.integrations import windows


def _definition():
    return build_task_definition(
        "Enroll O'Brien", r"C:\enroll\start.ps1", now=datetime(2026, 10, 18, 9, 30)
    )


class RunPowerShellTests(unittest.TestCase):
    @patch("labclaim.integrations.windows.subprocess.run")
    def test_returns_status_and_output(self, run_mock):
        run_mock.return_value = MagicMock(returncode=0, stdout="LISTED\n", stderr="")
        ok, stdout, stderr = windows.run_powershell("Write-Output 'x'")
        self.assertTrue(ok)
        self.assertEqual(stdout, "LISTED\n")
        cmd = run_mock.call_args[0][0]
        self.assertIn("-NoProfile", cmd)
        self.assertTrue(cmd[-1].startswith("[Console]::OutputEncoding = [System.Text.Encoding]::UTF8"))
        self.assertTrue(cmd[-1].endswith("Write-Output 'x'"))
        self.assertEqual(run_mock.call_args[1]["encoding"], "utf-8")
        self.assertEqual(run_mock.call_args[1]["errors"], "replace")

    @patch("labclaim.integrations.windows.subprocess.run", side_effect=FileNotFoundError())
    def test_missing_binary(self, run_mock):
        self.assertEqual(windows.run_powershell("x"), (False, "", "Binary missing"))

    @patch(
        "labclaim.integrations.windows.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="powershell", timeout=1),
    )
    def test_timeout(self, run_mock):
        self.assertEqual(windows.run_powershell("x"), (False, "", "Timed out"))


@unittest.skipIf(os.name == "nt", "uses a POSIX shell script as the PowerShell binary")
class NonAsciiOutputTests(unittest.TestCase):
    def _fake_powershell(self, printf_format):
        handle = tempfile.NamedTemporaryFile("w", suffix=".sh", delete=False)
        with handle:
            handle.write("#!/bin/sh\n")
            handle.write(f"printf '{printf_format}'\n")
        os.chmod(handle.name, os.stat(handle.name).st_mode | stat.S_IEXEC)
        self.addCleanup(os.unlink, handle.name)
        patcher = patch("labclaim.integrations.windows.POWERSHELL_PATH", handle.name)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_utf8_member_name_is_decoded(self):
        self._fake_powershell(r"MEMBER:CONTOSO\\m\303\274ller\nLISTED\n")
        self.assertEqual(windows.list_group_members("Remote Desktop Users"), ["CONTOSO\\müller"])

    def test_oem_code_page_byte_does_not_break_listing(self):
        # 0x81 is 'ü' in cp850 and undefined in cp1252 and UTF-8
        self._fake_powershell(r"MEMBER:CONTOSO\\m\201ller\nMEMBER:CONTOSO\\jdoe\nLISTED\n")
        members = windows.list_group_members("Remote Desktop Users")
        self.assertEqual(len(members), 2)
        self.assertTrue(members[0].startswith("CONTOSO\\m"))
        self.assertEqual(members[1], "CONTOSO\\jdoe")


class DomainLookupTests(unittest.TestCase):
    @patch("labclaim.integrations.windows.run_powershell")
    def test_script_matches_entry_against_joined_domain(self, ps_mock):
        ps_mock.return_value = (True, "DOMAIN:CONTOSO\n", "")
        windows.get_joined_domain_netbios()
        script = ps_mock.call_args[0][0]
        self.assertIn("Win32_ComputerSystem", script)
        self.assertIn("PartOfDomain", script)
        self.assertIn("$_.DomainName -eq $label", script)
        self.assertIn("$_.DnsForestName -eq $joined", script)
        self.assertNotIn("Where-Object { $_.DomainName } | Select-Object -First 1", script)

    @patch("labclaim.integrations.windows.run_powershell")
    def test_no_matching_entry_is_powershell_error(self, ps_mock):
        ps_mock.return_value = (True, "ERROR:No Win32_NTDomain entry matches joined domain 'contoso.com'\n", "")
        with self.assertRaises(PowerShellError) as ctx:
            windows.get_joined_domain_netbios()
        self.assertIn("contoso.com", str(ctx.exception))

    @patch("labclaim.integrations.windows.run_powershell")
    def test_returns_netbios_name(self, ps_mock):
        ps_mock.return_value = (True, "DOMAIN:CONTOSO\r\n", "")
        self.assertEqual(windows.get_joined_domain_netbios(), "CONTOSO")

    @patch("labclaim.integrations.windows.run_powershell")
    def test_workgroup_machine_is_not_found(self, ps_mock):
        ps_mock.return_value = (True, "NO_DOMAIN\n", "")
        with self.assertRaises(NotFoundError):
            windows.get_joined_domain_netbios()

    @patch("labclaim.integrations.windows.run_powershell")
    def test_wmi_error_is_powershell_error(self, ps_mock):
        ps_mock.return_value = (True, "ERROR:Invalid class\n", "")
        with self.assertRaises(PowerShellError):
            windows.get_joined_domain_netbios()


class GroupMembershipTests(unittest.TestCase):
    @patch("labclaim.integrations.windows.run_powershell")
    def test_lists_members(self, ps_mock):
        ps_mock.return_value = (True, "MEMBER:CONTOSO\\jdoe\nMEMBER:LocalAdmin\nLISTED\n", "")
        self.assertEqual(windows.list_group_members("Remote Desktop Users"), ["CONTOSO\\jdoe", "LocalAdmin"])

    @patch("labclaim.integrations.windows.run_powershell")
    def test_empty_group(self, ps_mock):
        ps_mock.return_value = (True, "LISTED\n", "")
        self.assertEqual(windows.list_group_members("Remote Desktop Users"), [])

    @patch("labclaim.integrations.windows.run_powershell")
    def test_missing_group_is_not_found(self, ps_mock):
        ps_mock.return_value = (True, "GROUP_NOT_FOUND\n", "")
        with self.assertRaises(NotFoundError):
            windows.list_group_members("Remote Desktop Users")

    @patch("labclaim.integrations.windows.run_powershell")
    def test_add_member(self, ps_mock):
        ps_mock.return_value = (True, "ADDED\n", "")
        self.assertTrue(windows.add_group_member("Remote Desktop Users", "CONTOSO\\jdoe"))
        script = ps_mock.call_args[0][0]
        self.assertIn("-Group 'Remote Desktop Users'", script)
        self.assertIn("-Member 'CONTOSO\\jdoe'", script)

    @patch("labclaim.integrations.windows.run_powershell")
    def test_add_existing_member(self, ps_mock):
        ps_mock.return_value = (True, "ALREADY_MEMBER\n", "")
        self.assertFalse(windows.add_group_member("Remote Desktop Users", "CONTOSO\\jdoe"))

    @patch("labclaim.integrations.windows.run_powershell")
    def test_add_access_denied(self, ps_mock):
        ps_mock.return_value = (True, "ACCESS_DENIED\n", "")
        with self.assertRaises(PrivilegeError):
            windows.add_group_member("Remote Desktop Users", "CONTOSO\\jdoe")

    @patch("labclaim.integrations.windows.run_powershell")
    def test_add_without_markers_uses_stderr(self, ps_mock):
        ps_mock.return_value = (False, "", "The term 'Add-LocalGroupMember' is not recognized")
        with self.assertRaises(PowerShellError) as ctx:
            windows.add_group_member("Remote Desktop Users", "CONTOSO\\jdoe")
        self.assertIn("not recognized", str(ctx.exception))


class ScheduledTaskTests(unittest.TestCase):
    def test_script_uses_force_and_system_principal(self):
        script = windows.build_register_task_script(_definition())
        self.assertIn("-Force", script)
        self.assertIn("-TaskName 'Enroll O''Brien'", script)
        self.assertIn("-UserId 'NT AUTHORITY\\SYSTEM' -LogonType ServiceAccount -RunLevel Highest", script)
        self.assertIn("-Once -At ([datetime]'2026-10-18T00:00:00')", script)
        self.assertIn("-RepetitionInterval (New-TimeSpan -Seconds 300)", script)
        self.assertIn("-RepetitionDuration (New-TimeSpan -Seconds 86400)", script)
        for flag in (
            "-AllowStartIfOnBatteries",
            "-DontStopIfGoingOnBatteries",
            "-StartWhenAvailable",
            "-RunOnlyIfNetworkAvailable",
            "-DontStopOnIdleEnd",
        ):
            self.assertIn(flag, script)

    @patch("labclaim.integrations.windows.run_powershell")
    def test_register_success(self, ps_mock):
        ps_mock.return_value = (True, "REGISTERED\n", "")
        windows.register_scheduled_task(_definition())
        ps_mock.assert_called_once()

    @patch("labclaim.integrations.windows.run_powershell")
    def test_register_access_denied(self, ps_mock):
        ps_mock.return_value = (True, "ACCESS_DENIED\n", "")
        with self.assertRaises(PrivilegeError):
            windows.register_scheduled_task(_definition())

    @patch("labclaim.integrations.windows.run_powershell")
    def test_register_scheduler_unavailable(self, ps_mock):
        ps_mock.return_value = (True, "SCHEDULER_UNAVAILABLE\n", "")
        with self.assertRaises(NotFoundError):
            windows.register_scheduled_task(_definition())


if __name__ == "__main__":
    unittest.main()
