from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class LabReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_group: str
    account_name: str
    lab_name: str

    @field_validator("resource_group", "account_name", "lab_name")
    def validate_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class LabRecord(BaseModel):
    name: str
    resource_id: str


class VmRecord(BaseModel):
    computer_name: str
    is_claimed: bool = False
    claimed_by_principal_id: Optional[str] = None
    resource_id: Optional[str] = None


class StudentRecord(BaseModel):
    # Plain string on purpose: a missing '@' is reported by the identity mapper.
    email: str
    principal_id: Optional[str] = None


class DomainIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain_netbios_name: str
    username: str

    @property
    def qualified_name(self) -> str:
        return f"{self.domain_netbios_name}\\{self.username}"


class QualifiedMember(BaseModel):
    """Group member written as DOMAIN\\user."""

    model_config = ConfigDict(frozen=True)

    domain: str
    user: str


class UnqualifiedMember(BaseModel):
    """Group member with no domain qualifier (local accounts, well-known SIDs)."""

    model_config = ConfigDict(frozen=True)

    name: str


MemberName = Union[QualifiedMember, UnqualifiedMember]


class ReconcileStatus(str, Enum):
    RECONCILED = "reconciled"
    ALREADY_PRESENT = "already_present"


class RunOutcome(str, Enum):
    UNCLAIMED = "unclaimed"
    RECONCILED = "reconciled"
    FAILED = "failed"


class EnrollmentTaskDefinition(BaseModel):
    task_name: str
    execute: str
    arguments: str = ""

    # --- TRIGGER ---
    start_at: datetime
    repetition_interval: timedelta = timedelta(minutes=5)
    repetition_duration: timedelta = timedelta(days=1)

    # --- SETTINGS ---
    allow_start_if_on_batteries: bool = True
    dont_stop_if_going_on_batteries: bool = True
    start_when_available: bool = True
    run_only_if_network_available: bool = True
    dont_stop_on_idle_end: bool = True

    # --- PRINCIPAL ---
    user_id: str = "NT AUTHORITY\\SYSTEM"
    run_level: str = "Highest"


class WorkflowResult(BaseModel):
    success: bool
    outcome: RunOutcome
    lab: Optional[str] = None
    computer_name: Optional[str] = None
    identity: Optional[DomainIdentity] = None
    rdp_status: Optional[ReconcileStatus] = None
    enrollment_task: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False
