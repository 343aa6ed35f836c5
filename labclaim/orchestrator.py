import logging
import os
import socket

from .config import CONFIG
from .core.enrollment import schedule_enrollment
from .core.identity import derive_identity
from .core.rdp_access import ensure_rdp_access
from .integrations import windows
from .models import LabReference, RunOutcome, WorkflowResult


def local_computer_name():
    return CONFIG.get("COMPUTER_NAME") or os.environ.get("COMPUTERNAME") or socket.gethostname()


def local_ip_addresses(hostname):
    try:
        return socket.gethostbyname_ex(hostname)[2]
    except OSError:
        return []


class ClaimOrchestrator:
    def __init__(self, lab_ref: LabReference, client, logger: logging.Logger, dry_run=False, computer_name=None):
        self.lab_ref = lab_ref
        self.client = client
        self.log = logger
        self.dry_run = dry_run
        self.computer_name = computer_name or local_computer_name()

    def run(self) -> WorkflowResult:
        """
        One reconciliation pass. Every failure is caught here and nowhere
        else; callers turn the result into an exit code.
        """
        self.log.info(
            f"Claim reconciliation: {self.lab_ref.resource_group}/{self.lab_ref.account_name}/"
            f"{self.lab_ref.lab_name} | host={self.computer_name} | dry_run={self.dry_run}"
        )
        try:
            return self._reconcile()
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self.log.error(f"❌ {message}")
            self.log.error("❌ Claim reconciliation did not complete; it will be retried on the next run.")
            return WorkflowResult(
                success=False,
                outcome=RunOutcome.FAILED,
                lab=self.lab_ref.lab_name,
                computer_name=self.computer_name,
                error=message,
                dry_run=self.dry_run,
            )

    def _reconcile(self) -> WorkflowResult:
        lab = self.client.get_lab(self.lab_ref)
        vm = self.client.get_current_vm(lab, self.computer_name, local_ip_addresses(self.computer_name))

        if not vm.is_claimed:
            self.log.info(f"💤 VM '{vm.computer_name}' is not claimed yet. Nothing to do.")
            return WorkflowResult(
                success=True,
                outcome=RunOutcome.UNCLAIMED,
                lab=lab.name,
                computer_name=vm.computer_name,
                dry_run=self.dry_run,
            )

        student = self.client.get_claiming_student(lab, vm)
        identity = derive_identity(student.email, windows.get_joined_domain_netbios())

        # RDP access first: enrollment applies MDM policy that may govern RDP afterwards
        rdp_status = ensure_rdp_access(identity, dry_run=self.dry_run)
        task = schedule_enrollment(
            CONFIG.get("ENROLLMENT_TASK_NAME"),
            CONFIG.get("ENROLLMENT_SCRIPT_PATH"),
            dry_run=self.dry_run,
        )

        self.client.clear_session()
        self.log.info(f"✅ VM '{vm.computer_name}' reconciled for {identity.qualified_name}.")
        return WorkflowResult(
            success=True,
            outcome=RunOutcome.RECONCILED,
            lab=lab.name,
            computer_name=vm.computer_name,
            identity=identity,
            rdp_status=rdp_status,
            enrollment_task=task.task_name,
            dry_run=self.dry_run,
        )
