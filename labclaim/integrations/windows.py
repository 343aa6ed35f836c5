import subprocess
import logging
from labclaim.config import CONFIG
from labclaim.errors import NotFoundError, PowerShellError, PrivilegeError

logger = logging.getLogger("labclaim.windows")

POWERSHELL_PATH = CONFIG.get("POWERSHELL_PATH", "powershell.exe")

# HRESULTs surfaced by the ScheduledTasks CIM provider
E_ACCESSDENIED = -2147024891  # 0x80070005
E_SERVICE_DISABLED = -2147023838  # 0x80070422
E_SERVICE_NOT_ACTIVE = -2147023834  # 0x80070426


# Child output is forced to UTF-8 so member names outside the OEM code page survive
UTF8_PREAMBLE = "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8\n"


def run_powershell(script):
    cmd = [
        POWERSHELL_PATH,
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
        UTF8_PREAMBLE + script,
    ]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=CONFIG.get("POWERSHELL_TIMEOUT", 120),
        )
        return result.returncode == 0, result.stdout, result.stderr
    except FileNotFoundError:
        logger.error(f"PowerShell not found at {POWERSHELL_PATH}")
        return False, "", "Binary missing"
    except subprocess.TimeoutExpired:
        logger.error("PowerShell call timed out")
        return False, "", "Timed out"


def ps_quote(value):
    """Single-quoted PowerShell literal; embedded quotes are doubled."""
    return "'" + str(value).replace("'", "''") + "'"


def _marker_lines(stdout):
    return [line.strip() for line in (stdout or "").splitlines() if line.strip()]


def _raise_for_markers(lines, stderr, what):
    if "GROUP_NOT_FOUND" in lines:
        raise NotFoundError(f"{what}: local group does not exist")
    if "ACCESS_DENIED" in lines:
        raise PrivilegeError(f"{what}: access denied (run elevated)")
    if "SCHEDULER_UNAVAILABLE" in lines:
        raise NotFoundError(f"{what}: Task Scheduler service is not available")
    for line in lines:
        if line.startswith("ERROR:"):
            raise PowerShellError(f"{what}: {line[len('ERROR:'):].strip()}")
    detail = (stderr or "").strip() or "no recognizable output"
    raise PowerShellError(f"{what}: {detail}")


def get_joined_domain_netbios():
    """
    Returns the NetBIOS name of the domain this machine is joined to,
    as reported live by WMI. Trusted domains also appear in Win32_NTDomain,
    so entries are matched against Win32_ComputerSystem.Domain rather than
    taken in enumeration order.
    """
    ps_script = """
    $ErrorActionPreference = "Stop"
    try {
        $cs = Get-CimInstance -ClassName Win32_ComputerSystem
        if (-not $cs.PartOfDomain) {
            Write-Output "NO_DOMAIN"
            return
        }
        $joined = $cs.Domain
        $label = $joined.Split(".")[0]
        $domains = @(Get-CimInstance -ClassName Win32_NTDomain | Where-Object { $_.DomainName })
        $d = $domains | Where-Object { $_.DomainName -eq $label } | Select-Object -First 1
        if (-not $d) {
            $forest = @($domains | Where-Object { $_.DnsForestName -eq $joined })
            if ($forest.Count -eq 1) { $d = $forest[0] }
        }
        if ($d) {
            Write-Output "DOMAIN:$($d.DomainName)"
        } else {
            Write-Output "ERROR:No Win32_NTDomain entry matches joined domain '$joined'"
        }
    } catch {
        Write-Output "ERROR:$($_.Exception.Message)"
    }
    """
    ok, stdout, stderr = run_powershell(ps_script)
    lines = _marker_lines(stdout)
    for line in lines:
        if line.startswith("DOMAIN:"):
            name = line[len("DOMAIN:"):].strip()
            if name:
                return name
    if "NO_DOMAIN" in lines:
        raise NotFoundError("Machine is not joined to a domain (Win32_ComputerSystem.PartOfDomain is false)")
    _raise_for_markers(lines, stderr, "Domain lookup")


def list_group_members(group):
    """Returns the raw member names of a local group."""
    ps_script = f"""
    try {{
        Get-LocalGroupMember -Group {ps_quote(group)} -ErrorAction Stop | ForEach-Object {{
            Write-Output "MEMBER:$($_.Name)"
        }}
        Write-Output "LISTED"
    }} catch [Microsoft.PowerShell.Commands.GroupNotFoundException] {{
        Write-Output "GROUP_NOT_FOUND"
    }} catch [System.UnauthorizedAccessException] {{
        Write-Output "ACCESS_DENIED"
    }} catch {{
        Write-Output "ERROR:$($_.Exception.Message)"
    }}
    """
    ok, stdout, stderr = run_powershell(ps_script)
    lines = _marker_lines(stdout)
    if "LISTED" not in lines:
        _raise_for_markers(lines, stderr, f"List '{group}'")
    return [line[len("MEMBER:"):].strip() for line in lines if line.startswith("MEMBER:")]


def add_group_member(group, member):
    """
    Adds a member to a local group.
    Returns True when added, False when the OS reports it is already a member.
    """
    ps_script = f"""
    try {{
        Add-LocalGroupMember -Group {ps_quote(group)} -Member {ps_quote(member)} -ErrorAction Stop
        Write-Output "ADDED"
    }} catch [Microsoft.PowerShell.Commands.GroupNotFoundException] {{
        Write-Output "GROUP_NOT_FOUND"
    }} catch [Microsoft.PowerShell.Commands.MemberExistsException] {{
        Write-Output "ALREADY_MEMBER"
    }} catch [Microsoft.PowerShell.Commands.AccessDeniedException] {{
        Write-Output "ACCESS_DENIED"
    }} catch [System.UnauthorizedAccessException] {{
        Write-Output "ACCESS_DENIED"
    }} catch {{
        Write-Output "ERROR:$($_.Exception.Message)"
    }}
    """
    ok, stdout, stderr = run_powershell(ps_script)
    lines = _marker_lines(stdout)
    if "ADDED" in lines:
        return True
    if "ALREADY_MEMBER" in lines:
        return False
    _raise_for_markers(lines, stderr, f"Add '{member}' to '{group}'")


def _timespan(delta):
    return f"(New-TimeSpan -Seconds {int(delta.total_seconds())})"


def build_register_task_script(definition):
    action_args = f"-Execute {ps_quote(definition.execute)}"
    if definition.arguments:
        action_args += f" -Argument {ps_quote(definition.arguments)}"

    settings_flags = {
        "-AllowStartIfOnBatteries": definition.allow_start_if_on_batteries,
        "-DontStopIfGoingOnBatteries": definition.dont_stop_if_going_on_batteries,
        "-StartWhenAvailable": definition.start_when_available,
        "-RunOnlyIfNetworkAvailable": definition.run_only_if_network_available,
        "-DontStopOnIdleEnd": definition.dont_stop_on_idle_end,
    }
    settings_args = " ".join(flag for flag, enabled in settings_flags.items() if enabled)
    start_at = definition.start_at.strftime("%Y-%m-%dT%H:%M:%S")

    # -Force replaces any task already registered under this name
    return f"""
    try {{
        $action = New-ScheduledTaskAction {action_args}
        $trigger = New-ScheduledTaskTrigger -Once -At ([datetime]{ps_quote(start_at)}) -RepetitionInterval {_timespan(definition.repetition_interval)} -RepetitionDuration {_timespan(definition.repetition_duration)}
        $settings = New-ScheduledTaskSettingsSet {settings_args}
        $principal = New-ScheduledTaskPrincipal -UserId {ps_quote(definition.user_id)} -LogonType ServiceAccount -RunLevel {definition.run_level}
        Register-ScheduledTask -TaskName {ps_quote(definition.task_name)} -Action $action -Trigger $trigger -Settings $settings -Principal $principal -Force -ErrorAction Stop | Out-Null
        Write-Output "REGISTERED"
    }} catch [System.UnauthorizedAccessException] {{
        Write-Output "ACCESS_DENIED"
    }} catch {{
        $hr = $_.Exception.HResult
        if ($_.Exception.InnerException) {{ $hr = $_.Exception.InnerException.HResult }}
        if ($hr -eq {E_ACCESSDENIED}) {{
            Write-Output "ACCESS_DENIED"
        }} elseif ($hr -eq {E_SERVICE_DISABLED} -or $hr -eq {E_SERVICE_NOT_ACTIVE}) {{
            Write-Output "SCHEDULER_UNAVAILABLE"
        }} else {{
            Write-Output "ERROR:$($_.Exception.Message)"
        }}
    }}
    """


def register_scheduled_task(definition):
    ok, stdout, stderr = run_powershell(build_register_task_script(definition))
    lines = _marker_lines(stdout)
    if "REGISTERED" in lines:
        return
    _raise_for_markers(lines, stderr, f"Register task '{definition.task_name}'")
