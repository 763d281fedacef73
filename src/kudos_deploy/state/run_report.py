"""
Run report: the operator-facing record of one orchestrator run.

Created when the run starts, appended to by every phase, frozen by ``emit()``.
A failed run names the phase, what now exists, and what to do next.
"""
import json
import logging
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Orchestrator phases, forward path first."""
    PROVISIONING = "PROVISIONING"
    AUTHENTICATING = "AUTHENTICATING"
    BUILDING = "BUILDING"
    APPLYING = "APPLYING"
    AWAITING_READY = "AWAITING_READY"
    DRAINING = "DRAINING"
    DESTROYING = "DESTROYING"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    DESTROYED = "DESTROYED"


class ResourceState(str, Enum):
    """What the operator should assume exists after the run."""
    PRESENT = "present"
    ABSENT = "absent"
    PARTIAL = "possibly partial"
    UNKNOWN = "unknown"


class PhaseStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


EXIT_CODES = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.DESTROYED: 0,
    RunStatus.FAILED: 1,
    RunStatus.DEGRADED: 3,
    RunStatus.CANCELLED: 130,
}

NEXT_ACTIONS = {
    Phase.PROVISIONING: "Inspect the Terraform output above, fix the cause and re-run 'provision' or 'deploy' "
                        "(it resumes from the current state); run 'destroy' to remove partial resources.",
    Phase.AUTHENTICATING: "Check AWS credentials and cluster access, then retry 'deploy'; "
                          "run 'destroy' if the infrastructure is no longer wanted.",
    Phase.BUILDING: "Fix the container build (see docker output), then retry 'deploy'. "
                    "Infrastructure is still running; run 'destroy' to stop charges.",
    Phase.APPLYING: "Inspect the manifest error, then retry 'deploy'. Infrastructure is still running; "
                    "run 'destroy' to stop charges.",
    Phase.AWAITING_READY: "The workload exists but is not confirmed healthy. Wait and run 'status', "
                          "or inspect logs: kubectl logs -l app=<app> -n <namespace>.",
    Phase.DRAINING: "Workload removal failed; infrastructure destroy will remove it anyway.",
    Phase.DESTROYING: "Inspect the Terraform output, then retry 'destroy' (it converges on partial state).",
}


@dataclass
class PhaseOutcome:
    phase: Phase
    status: PhaseStatus = PhaseStatus.IN_PROGRESS
    started_at: float = 0.0
    duration: float = 0.0
    attempts: int = 0
    detail: str = ""
    error: Optional[Dict[str, Any]] = None
    observations: Dict[str, Any] = field(default_factory=dict)


class ReportFrozenError(RuntimeError):
    """Raised when something tries to change an emitted report."""


class RunReport:
    """Ordered phase outcomes plus the final verdict of a run."""

    def __init__(self, verb: str, resource_prefix: str, clock=time.time):
        self.verb = verb
        self.resource_prefix = resource_prefix
        self._clock = clock
        self.started_at = clock()
        self.finished_at: Optional[float] = None
        self.status = RunStatus.RUNNING
        self.phases: List[PhaseOutcome] = []
        self.endpoint: Optional[str] = None
        self.error: Optional[Dict[str, Any]] = None
        self.failed_phase: Optional[Phase] = None
        self.infrastructure_state = ResourceState.UNKNOWN
        self.workload_state = ResourceState.UNKNOWN
        self.next_action: Optional[str] = None
        self.details: Dict[str, Any] = {}
        self._emitted = False

    # Mutation, refused after emit()

    def _check_open(self):
        if self._emitted:
            raise ReportFrozenError("run report was already emitted")

    @property
    def current(self) -> Optional[PhaseOutcome]:
        if self.phases and self.phases[-1].status == PhaseStatus.IN_PROGRESS:
            return self.phases[-1]
        return None

    def start_phase(self, phase: Phase) -> PhaseOutcome:
        self._check_open()
        outcome = PhaseOutcome(phase=phase, started_at=self._clock())
        self.phases.append(outcome)
        logger.info(f"📋 Phase started: {phase.value}")
        return outcome

    def note(self, detail: Optional[str] = None, attempts: Optional[int] = None, **observations):
        """Attach detail, retry counts or observations to the running phase."""
        self._check_open()
        outcome = self.current
        if outcome is None:
            return
        if detail:
            outcome.detail = f"{outcome.detail}; {detail}" if outcome.detail else detail
        if attempts is not None:
            outcome.attempts += attempts
        outcome.observations.update(observations)

    def _close_phase(self, status: PhaseStatus, error=None) -> Optional[PhaseOutcome]:
        outcome = self.current
        if outcome is None:
            return None
        outcome.status = status
        outcome.duration = self._clock() - outcome.started_at
        if error is not None:
            outcome.error = error.to_dict() if hasattr(error, "to_dict") else {"message": str(error)}
        return outcome

    def complete_phase(self, status: PhaseStatus = PhaseStatus.SUCCEEDED, error=None):
        self._check_open()
        outcome = self._close_phase(status, error)
        if outcome is not None:
            icon = "✅" if status == PhaseStatus.SUCCEEDED else "⚠️"
            logger.info(f"{icon} Phase {outcome.phase.value} {status.value} in {outcome.duration:.1f}s")

    def skip_phase(self, phase: Phase, detail: str):
        self._check_open()
        self.phases.append(PhaseOutcome(phase=phase, status=PhaseStatus.SKIPPED,
                                        started_at=self._clock(), detail=detail))
        logger.info(f"⏭️ Phase {phase.value} skipped: {detail}")

    def fail_phase(self, error: Exception):
        self._check_open()
        outcome = self._close_phase(PhaseStatus.FAILED, error)
        if outcome is not None:
            self.failed_phase = outcome.phase
            self.next_action = NEXT_ACTIONS.get(outcome.phase)
            logger.error(f"❌ Phase failed: {outcome.phase.value} - {error}")
        self.error = outcome.error if outcome is not None else {"message": str(error)}

    def set_endpoint(self, endpoint: str):
        self._check_open()
        self.endpoint = endpoint

    def mark_state(self, infrastructure: Optional[ResourceState] = None,
                   workload: Optional[ResourceState] = None):
        self._check_open()
        if infrastructure is not None:
            self.infrastructure_state = ResourceState(infrastructure)
        if workload is not None:
            self.workload_state = ResourceState(workload)

    # Derived

    @property
    def last_completed_phase(self) -> Optional[Phase]:
        done = [p.phase for p in self.phases if p.status in (PhaseStatus.SUCCEEDED, PhaseStatus.DEGRADED)]
        return done[-1] if done else None

    @property
    def total_duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else self._clock()
        return end - self.started_at

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 1)

    @property
    def emitted(self) -> bool:
        return self._emitted

    def emit(self, status: RunStatus, next_action: Optional[str] = None) -> "RunReport":
        """Record the final status and freeze the report."""
        self._check_open()
        if self.current is not None:
            self._close_phase(PhaseStatus.FAILED if status == RunStatus.FAILED else PhaseStatus.SKIPPED)
        self.status = status
        if next_action:
            self.next_action = next_action
        self.finished_at = self._clock()
        self._emitted = True
        logger.info(f"🏁 {self.verb} {self.resource_prefix}: {status.value} in {self.total_duration:.1f}s")
        return self

    # Output

    def to_dict(self) -> Dict[str, Any]:
        phases = []
        for outcome in self.phases:
            data = asdict(outcome)
            data["phase"] = outcome.phase.value
            data["status"] = outcome.status.value
            phases.append(data)
        return {
            "verb": self.verb,
            "resource_prefix": self.resource_prefix,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
            "total_duration": round(self.total_duration, 2),
            "phases": phases,
            "last_completed_phase": self.last_completed_phase.value if self.last_completed_phase else None,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "endpoint": self.endpoint,
            "error": self.error,
            "infrastructure": self.infrastructure_state.value,
            "workload": self.workload_state.value,
            "next_action": self.next_action,
            "details": self.details,
        }

    def save(self, path: str) -> Path:
        """Write the report as JSON, like the deployment state file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)
        logger.info(f"📝 Run report written to {target}")
        return target

    def render(self) -> str:
        """Human-readable summary for the terminal."""
        lines = [
            "=" * 60,
            f"{self.verb.upper()} {self.resource_prefix}: {self.status.value}",
            "=" * 60,
        ]
        for outcome in self.phases:
            line = f"  {outcome.phase.value:<15} {outcome.status.value:<12} {outcome.duration:7.1f}s"
            if outcome.attempts:
                line += f"  attempts={outcome.attempts}"
            if outcome.detail:
                line += f"  {outcome.detail}"
            lines.append(line)
        lines.append(f"Total duration: {self.total_duration:.1f}s")
        if self.endpoint:
            lines.append(f"🌐 Endpoint: {self.endpoint}")
        if self.error:
            lines.append(f"❌ Error: {self.error.get('message')}")
        if self.failed_phase:
            lines.append(f"Failed phase: {self.failed_phase.value}")
        lines.append(f"Infrastructure: {self.infrastructure_state.value}")
        lines.append(f"Workload: {self.workload_state.value}")
        if self.next_action:
            lines.append(f"Next: {self.next_action}")
        return "\n".join(lines)
