from .cancellation import CancellationToken
from .orchestrator import DeploymentOrchestrator, RunState
from .status import collect_status
from .teardown import TeardownOrchestrator

__all__ = ["CancellationToken", "DeploymentOrchestrator", "RunState", "TeardownOrchestrator", "collect_status"]
