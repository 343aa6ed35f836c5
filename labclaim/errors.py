"""Typed failures raised by the claim-reconciliation components.

Components raise these and let them propagate; the orchestrator is the only
place they are caught.
"""


class WorkflowError(Exception):
    """Base class for every failure the workflow knows how to describe."""


class LabLookupError(WorkflowError, LookupError):
    """Lab account, lab, VM or claiming student could not be resolved."""


class LabServicesError(WorkflowError):
    """Lab Services returned a response we could not use."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class MalformedIdentityError(WorkflowError, ValueError):
    """The claimant identifier has no separable user name."""


class PrivilegeError(WorkflowError, PermissionError):
    """The OS rejected a mutation for lack of rights."""


class NotFoundError(WorkflowError):
    """An expected local group, task store or domain membership is missing."""


class PowerShellError(WorkflowError):
    """A PowerShell invocation failed in a way we could not classify."""
