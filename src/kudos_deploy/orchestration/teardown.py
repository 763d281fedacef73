"""Teardown path: DRAINING (best effort) then DESTROYING."""
import logging
from dataclasses import replace
from typing import Tuple

from kudos_deploy.adapters import preflight
from kudos_deploy.errors import DeploymentError
from kudos_deploy.models import DeploymentRequest
from kudos_deploy.monitoring import checks
from kudos_deploy.orchestration.orchestrator import BaseOrchestrator, RunState
from kudos_deploy.state.run_report import Phase, PhaseStatus, ResourceState, RunReport, RunStatus

logger = logging.getLogger(__name__)


class TeardownOrchestrator(BaseOrchestrator):
    """Removes the workload and then every provisioned resource of a request."""

    def destroy(self, request: DeploymentRequest) -> RunReport:
        return self._run("destroy", request, [
            (Phase.DRAINING, self._draining),
            (Phase.DESTROYING, self._destroying),
        ], success=RunStatus.DESTROYED)

    def _on_failure(self, report: RunReport, phase: Phase, state: RunState) -> None:
        if phase == Phase.DESTROYING:
            report.mark_state(infrastructure=ResourceState.PARTIAL)

    def _draining(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        """Delete the workload so the load balancer is released before Terraform runs.

        Never fatal: anything left behind goes with the cluster.
        """
        request = state.request
        try:
            handle = self.terraform.read_handle(request)
        except DeploymentError as e:
            logger.warning(f"⚠️ Cannot read infrastructure for draining: {e}")
            report.note(detail=f"skipped: {e.message}", error=e.to_dict())
            return state, PhaseStatus.SKIPPED

        if handle is None:
            report.note(detail="no infrastructure found")
            report.mark_state(workload=ResourceState.ABSENT)
            return state, PhaseStatus.SKIPPED

        state = replace(state, handle=handle)
        try:
            handle = self.eks.authenticate(handle, self._stack)
            deleted = self.kube.delete_workload(handle, request.app_name, request.namespace)
            self.kube.delete_namespace(handle, request.namespace)
            report.note(detail=f"{deleted} workload object(s) deleted", deleted=deleted)
        except DeploymentError as e:
            logger.warning(f"⚠️ Workload removal failed, continuing with destroy: {e}")
            report.note(detail=f"workload removal failed: {e.message}", error=e.to_dict())
            return replace(state, handle=handle), PhaseStatus.SKIPPED

        released = self._poll(
            report,
            checks.service_released(self.kube, handle, f"{request.app_name}-service", request.namespace),
            self.settings.drain_timeout, self.settings.drain_interval, "load balancer released",
        )
        if not released.satisfied:
            logger.warning("⚠️ Load balancer still present; Terraform destroy may take longer")
            report.note(detail="load balancer not confirmed released")
        report.mark_state(workload=ResourceState.ABSENT)
        return replace(state, handle=handle), PhaseStatus.SUCCEEDED

    def _destroying(self, state: RunState, report: RunReport) -> Tuple[RunState, PhaseStatus]:
        self._preflight(preflight.DESTROY_TOOLS, state.request.region)
        summary = self.terraform.destroy_infrastructure(state.request)
        report.note(detail=f"{summary.resources_destroyed} resource(s) destroyed",
                    resources_destroyed=summary.resources_destroyed,
                    workspace_removed=summary.workspace_removed)
        report.mark_state(infrastructure=ResourceState.ABSENT, workload=ResourceState.ABSENT)
        return state, PhaseStatus.SUCCEEDED
