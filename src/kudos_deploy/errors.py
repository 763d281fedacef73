"""
Error taxonomy for deployment runs.

Every adapter failure is raised as a ``DeploymentError`` subclass. The
``transient`` flag separates failures worth retrying (network blips,
eventual-consistency lag, expired registry tokens) from permanent ones (bad
credentials, malformed manifests, quota exceeded) that must surface at once.
"""
from typing import Any, Dict, Optional


class DeploymentError(Exception):
    """Base class for every failure an adapter can report."""

    kind = "deployment"

    def __init__(self, message: str, transient: bool = False,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.transient = transient
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "transient": self.transient,
            "details": self.details,
        }


class ProvisionError(DeploymentError):
    kind = "provision"


class PrerequisiteError(ProvisionError):
    """A required CLI tool or credential is missing."""
    kind = "prerequisite"


class AuthError(DeploymentError):
    kind = "auth"


class BuildError(DeploymentError):
    kind = "build"


class ApplyError(DeploymentError):
    kind = "apply"


class ReadinessTimeout(DeploymentError):
    kind = "readiness_timeout"


class DestroyError(DeploymentError):
    kind = "destroy"


class LockError(DeploymentError):
    """Another run holds the advisory lock for the same resource prefix."""
    kind = "lock"


class CommandError(DeploymentError):
    """A CLI invocation exited non-zero or could not be started."""
    kind = "command"

    def __init__(self, message: str, result=None, transient: bool = False):
        details = result.to_dict() if result is not None else {}
        super().__init__(message, transient=transient, details=details)
        self.result = result


class RunCancelled(Exception):
    """Raised at a phase boundary once the operator has interrupted the run."""
