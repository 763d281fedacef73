"""
Deployment orchestrator.

The forward path is an explicit state machine driven by one control loop:

    PROVISIONING -> AUTHENTICATING -> BUILDING -> APPLYING -> AWAITING_READY

Each phase receives the immutable ``RunState`` produced by its predecessor
and returns a new one. A ``DeploymentError`` in any phase ends the run FAILED
at that phase, unless cancellation was already requested, in which case the
run ends CANCELLED. Nothing already created is rolled back. Readiness that never
arrives ends the run DEGRADED with the infrastructure and workload in place.
"""
import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from kudos_deploy.adapters import preflight
from kudos_deploy.adapters.registry import derive_image_tag
from kudos_deploy.config.settings import Settings
from kudos_deploy.errors import ApplyError, DeploymentError, LockError, ProvisionError, RunCancelled
from kudos_deploy.models import DeploymentRequest, ImageReference, InfrastructureHandle, WorkloadSpec
from kudos_deploy.monitoring import checks
from kudos_deploy.monitoring.poller import CheckResult, PollResult, ReadinessPoller
from kudos_deploy.orchestration.cancellation import CancellationToken
from kudos_deploy.state.run_report import Phase, PhaseStatus, ResourceState, RunReport, RunStatus
from kudos_deploy.utils.locking import AdvisoryLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunState:
    """Values threaded from phase to phase; replaced, never mutated."""
    request: DeploymentRequest
    handle: Optional[InfrastructureHandle] = None
    validated: bool = False
    image: Optional[ImageReference] = None
    workload: Optional[WorkloadSpec] = None


PhaseHandler = Callable[[RunState, RunReport], Tuple[RunState, PhaseStatus]]


class BaseOrchestrator:
    """Shared control loop: lock, phase sequencing, cancellation and reporting."""

    def __init__(self, settings: Settings, terraform, eks, kube,
                 poller: Optional[ReadinessPoller] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 check_prerequisites: bool = True,
                 report_clock: Callable[[], float] = time.time):
        self.settings = settings
        self.terraform = terraform
        self.eks = eks
        self.kube = kube
        self.cancel_token = cancel_token or CancellationToken()
        self.poller = poller or ReadinessPoller(cancel_token=self.cancel_token)
        self.check_prerequisites = check_prerequisites
        self.report_clock = report_clock
        self._stack: Optional[ExitStack] = None

    def _on_failure(self, report: RunReport, phase: Phase, state: RunState) -> None:
        """Record what exists after ``phase`` failed."""

    def _run(self, verb: str, request: DeploymentRequest,
             steps: List[Tuple[Phase, PhaseHandler]],
             success: RunStatus = RunStatus.SUCCEEDED) -> RunReport:
        report = RunReport(verb, request.resource_prefix, clock=self.report_clock)
        report.details["request"] = {
            "app_name": request.app_name,
            "environment": request.environment,
            "region": request.region,
        }
        state = RunState(request=request)
        lock = AdvisoryLock(self.settings.lock_dir, request.resource_prefix)

        logger.info(f"🚀 Starting {verb} of {request.resource_prefix} in {request.region}")
        with ExitStack() as stack:
            self._stack = stack
            try:
                lock.acquire(owner=verb)
            except LockError as e:
                report.start_phase(steps[0][0])
                report.fail_phase(e)
                return self._finish(report, RunStatus.FAILED,
                                   next_action="Wait for the other run on this environment to finish, then retry.")
            stack.callback(lock.release)

            for phase, handler in steps:
                try:
                    self.cancel_token.raise_if_cancelled()
                    report.start_phase(phase)
                    state, status = handler(state, report)
                except RunCancelled as e:
                    return self._cancelled(report, str(e))
                except Exception as e:
                    if self.cancel_token.cancelled:
                        return self._interrupted(report, phase, state, e)
                    if not isinstance(e, DeploymentError):
                        logger.exception(f"Unexpected error during {phase.value}")
                    report.fail_phase(e)
                    self._on_failure(report, phase, state)
                    return self._finish(report, RunStatus.FAILED)

                report.complete_phase(status)
                if status == PhaseStatus.DEGRADED:
                    return self._finish(report, RunStatus.DEGRADED)

            return self._finish(report, success, next_action=self._success_action(state))

    def _success_action(self, state: RunState) -> Optional[str]:
        return None

    def _finish(self, report: RunReport, status: RunStatus, next_action: Optional[str] = None) -> RunReport:
        report.emit(status, next_action=next_action)
        if self.settings.report_dir:
            stamp = time.strftime("%Y%m%d-%H%M%S", time.gmtime(report.started_at))
            report.save(f"{self.settings.report_dir}/{report.resource_prefix}-{report.verb}-{stamp}.json")
        return report

    def _cancelled(self, report: RunReport, reason: str) -> RunReport:
        last = report.last_completed_phase
        done = last.value if last else "none"
        return self._finish(
            report,
            RunStatus.CANCELLED,
            next_action=f"Run stopped ({reason}); last completed phase: {done}. "
                        f"Re-run the same command to resume.",
        )

    def _interrupted(self, report: RunReport, phase: Phase, state: RunState, error: Exception) -> RunReport:
        """A phase that errored after cancellation was requested ends the run CANCELLED."""
        logger.warning(f"⚠️ {phase.value} stopped after cancellation: {error}")
        report.complete_phase(PhaseStatus.SKIPPED, error=error)
        self._on_failure(report, phase, state)
        return self._cancelled(report, self.cancel_token.reason or "cancelled")

    def _poll(self, report: RunReport, predicate, timeout: float, interval: float,
              description: str) -> PollResult:
        result = self.poller.poll(predicate, timeout=timeout, interval=interval, description=description)
        report.note(attempts=result.attempts, **{description: result.last_observation})
        return result

    # Phases shared by deploy, provision and destroy

    def _preflight(self, tools, region: str) -> None:
        if not self.check_prerequisites:
            return
        preflight.check_tools(tools)
        preflight.check_credentials(region)

    def _authenticate(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        handle = self.eks.authenticate(state.handle, self._stack)
        report.note(detail=f"kubeconfig for {handle.cluster_name}")
        return replace(state, handle=handle), PhaseStatus.SUCCEEDED


class DeploymentOrchestrator(BaseOrchestrator):
    """Drives provisioning, build, rollout and readiness for one request."""

    def __init__(self, settings: Settings, terraform, eks, registry, kube,
                 poller: Optional[ReadinessPoller] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 confirm: Optional[Callable] = None,
                 check_prerequisites: bool = True,
                 http_session=None,
                 report_clock: Callable[[], float] = time.time):
        super().__init__(settings, terraform, eks, kube, poller=poller, cancel_token=cancel_token,
                         check_prerequisites=check_prerequisites, report_clock=report_clock)
        self.registry = registry
        self.confirm = confirm
        self.http_session = http_session

    def provision(self, request: DeploymentRequest) -> RunReport:
        """Create or converge infrastructure and wait for worker nodes."""
        return self._run("provision", request, [
            (Phase.PROVISIONING, self._provisioning),
            (Phase.AUTHENTICATING, self._authenticate),
            (Phase.AWAITING_READY, self._awaiting_nodes),
        ])

    def deploy(self, request: DeploymentRequest) -> RunReport:
        """Full forward path ending in a reachable endpoint."""
        return self._run("deploy", request, [
            (Phase.PROVISIONING, self._provisioning),
            (Phase.AUTHENTICATING, self._authenticate),
            (Phase.BUILDING, self._building),
            (Phase.APPLYING, self._applying),
            (Phase.AWAITING_READY, self._awaiting_ready),
        ])

    def _on_failure(self, report: RunReport, phase: Phase, state: RunState) -> None:
        if phase == Phase.PROVISIONING:
            report.mark_state(infrastructure=ResourceState.PARTIAL, workload=ResourceState.ABSENT)
        elif phase == Phase.APPLYING:
            report.mark_state(workload=ResourceState.PARTIAL)

    def _success_action(self, state: RunState) -> Optional[str]:
        namespace = state.request.namespace
        if state.workload is None:
            return f"Cluster ready. Deploy with: kudos-deploy deploy --app-name {state.request.app_name} " \
                   f"--environment {state.request.environment}"
        return (f"Check pods: kubectl get pods -n {namespace}; "
                f"view logs: kubectl logs -l app={state.workload.name} -n {namespace}; "
                f"tear down: kudos-deploy destroy --app-name {state.request.app_name} "
                f"--environment {state.request.environment}")

    def workload_spec(self, request: DeploymentRequest, image: ImageReference) -> WorkloadSpec:
        s = self.settings
        return WorkloadSpec(
            name=request.app_name,
            namespace=request.namespace,
            image=image,
            replicas=request.replicas,
            container_port=s.container_port,
            cpu_request=s.cpu_request,
            memory_request=s.memory_request,
            cpu_limit=s.cpu_limit,
            memory_limit=s.memory_limit,
            readiness_probe_path=s.readiness_probe_path,
            liveness_probe_path=s.liveness_probe_path,
            labels={"environment": request.environment},
        )

    def _provisioning(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        request = state.request
        self._preflight(preflight.DEPLOY_TOOLS if self.registry is not None else preflight.PROVISION_TOOLS,
                        request.region)

        handle = self.terraform.ensure_infrastructure(request, confirm=self.confirm)
        report.mark_state(infrastructure=ResourceState.PRESENT)

        described = {}

        def cluster_active() -> CheckResult:
            described.update(self.eks.describe(handle))
            return CheckResult(True, described.get("status"))

        result = self._poll(report, cluster_active, self.settings.nodes_timeout,
                            self.settings.nodes_interval, "cluster active")
        if result.error is not None:
            raise result.error
        if not result.satisfied:
            raise ProvisionError(f"Cluster {handle.cluster_name} did not become ACTIVE "
                                 f"within {self.settings.nodes_timeout:.0f}s", details={"last": result.last_observation})

        report.note(detail=f"cluster {handle.cluster_name}, registry {handle.registry_url}")
        report.details["infrastructure"] = handle.to_dict()
        return replace(state, handle=handle, validated=True), PhaseStatus.SUCCEEDED

    def _building(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        if state.handle is None or not state.validated:
            raise ProvisionError("Infrastructure handle was not validated; refusing to build")

        request = state.request
        registry_url = request.registry or state.handle.registry_url
        tag = request.image_tag or derive_image_tag(self.registry.runner, request.build_context)
        image = self.registry.build_and_publish(request.build_context, registry_url, tag)

        report.note(detail=f"image {image.uri}", attempts=self.registry.last_push_attempts,
                    digest=image.digest)
        report.details["image"] = image.uri
        return replace(state, image=image), PhaseStatus.SUCCEEDED

    def _applying(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        if state.handle is None or not state.validated:
            raise ProvisionError("Infrastructure handle was not validated; refusing to apply")
        if state.image is None or not state.image.digest:
            raise ApplyError("No confirmed image push; refusing to apply")

        spec = self.workload_spec(state.request, state.image)
        changed = self.kube.apply_workload(state.handle, spec)
        report.mark_state(workload=ResourceState.PRESENT)
        report.note(detail="applied" if changed else "unchanged, no rollout", changed=changed,
                    spec_hash=spec.spec_hash())
        return replace(state, workload=spec), PhaseStatus.SUCCEEDED

    def _awaiting_ready(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        s = self.settings
        handle, spec = state.handle, state.workload

        rollout = self._poll(report, checks.rollout_complete(self.kube, handle, spec.name, spec.namespace),
                             s.rollout_timeout, s.rollout_interval, "rollout complete")
        if not rollout.satisfied:
            return state, self._degraded(report, "rollout did not complete", rollout)

        endpoint = self._poll(report, checks.endpoint_assigned(self.kube, handle, spec.service_name, spec.namespace),
                              s.endpoint_timeout, s.endpoint_interval, "endpoint assigned")
        if not endpoint.satisfied:
            return state, self._degraded(report, "load balancer hostname not assigned", endpoint)

        url = f"http://{endpoint.last_observation}"
        report.set_endpoint(url)

        http = self._poll(report, checks.http_ok(url, s.http_request_timeout, session=self.http_session),
                          s.http_timeout, s.http_interval, "http 200")
        if not http.satisfied:
            return state, self._degraded(report, f"{url} did not answer 200", http)

        logger.info(f"🌐 Your app is live at: {url}")
        return state, PhaseStatus.SUCCEEDED

    def _awaiting_nodes(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        s = self.settings
        minimum = state.request.min_nodes
        result = self._poll(report, checks.nodes_ready(self.kube, state.handle, minimum),
                            s.nodes_timeout, s.nodes_interval, "nodes ready")
        if not result.satisfied:
            return state, self._degraded(report, f"fewer than {minimum} ready nodes", result)
        return state, PhaseStatus.SUCCEEDED

    @staticmethod
    def _degraded(report: RunReport, reason: str, result: PollResult) -> PhaseStatus:
        if result.error is not None:
            reason = f"{reason}: {result.error.message}"
            report.error = result.error.to_dict()
        else:
            reason = f"{reason} after {result.elapsed:.0f}s"
        report.note(detail=reason)
        report.next_action = (
            f"Infrastructure and workload exist but readiness is unconfirmed ({reason}). "
            "Wait and run 'status', or inspect: kubectl get pods,svc -n <namespace>. "
            "Run 'destroy' if the deployment is not wanted."
        )
        logger.warning(f"⚠️ Deployment degraded: {reason}")
        return PhaseStatus.DEGRADED
