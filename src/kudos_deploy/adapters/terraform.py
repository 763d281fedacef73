"""
Terraform adapter for the EKS infrastructure.

Each resource prefix (``<app>-<env>``) gets its own Terraform workspace, so
the remote state store is the single source of truth for what exists and
concurrent runs for different prefixes never share state. Every mutating
command honours Terraform's state lock through ``-lock-timeout``.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from kudos_deploy.errors import CommandError, DeploymentError, DestroyError, ProvisionError, RunCancelled
from kudos_deploy.models import DeploymentRequest, DestroySummary, InfrastructureHandle
from kudos_deploy.utils.decorators import log_execution_time, log_operation, retry
from kudos_deploy.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

# Resource types whose replacement means a new network topology
NETWORK_RESOURCE_TYPES = {
    "aws_vpc",
    "aws_subnet",
    "aws_internet_gateway",
    "aws_nat_gateway",
    "aws_eip",
    "aws_route_table",
    "aws_route_table_association",
    "aws_route",
    "aws_security_group",
    "aws_network_acl",
    "aws_vpc_endpoint",
}

REQUIRED_OUTPUTS = ("cluster_name", "ecr_repository_url", "vpc_id")

PLAN_NO_CHANGES = 0
PLAN_HAS_CHANGES = 2


@dataclass
class PlanSummary:
    """What ``terraform plan`` intends to do."""
    to_add: int = 0
    to_change: int = 0
    to_destroy: int = 0
    network_replacements: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_change or self.to_destroy)

    def describe(self) -> str:
        return f"{self.to_add} to add, {self.to_change} to change, {self.to_destroy} to destroy"


def summarize_plan(plan: Dict[str, Any]) -> PlanSummary:
    """Count actions in ``terraform show -json`` output."""
    summary = PlanSummary()
    for change in plan.get("resource_changes", []) or []:
        actions = change.get("change", {}).get("actions", [])
        if actions in (["no-op"], ["read"]):
            continue
        if "create" in actions:
            summary.to_add += 1
        if "update" in actions:
            summary.to_change += 1
        if "delete" in actions:
            summary.to_destroy += 1
            if change.get("type") in NETWORK_RESOURCE_TYPES:
                summary.network_replacements.append(change.get("address", change.get("type")))
    return summary


class TerraformAdapter:
    """Runs the Terraform configuration in ``working_dir`` for one request at a time."""

    def __init__(self, working_dir: str, runner: Optional[CommandRunner] = None,
                 lock_timeout: str = "300s"):
        self.working_dir = str(working_dir)
        self.runner = runner or CommandRunner()
        self.lock_timeout = lock_timeout

    def _terraform(self, *args: str, **kwargs):
        return self.runner.run(["terraform", *args], cwd=self.working_dir, **kwargs)

    def _plan_file(self, request: DeploymentRequest) -> Path:
        return Path(self.working_dir) / f"{request.resource_prefix}.tfplan"

    @staticmethod
    def _var_args(request: DeploymentRequest) -> List[str]:
        args = []
        for key, value in request.terraform_variables().items():
            args.extend(["-var", f"{key}={value}"])
        return args

    @retry(max_attempts=3, delay=10.0, logger_name=__name__)
    def init(self) -> None:
        """``terraform init``; provider downloads are retried on network blips."""
        self._terraform("init", "-input=false", "-no-color")

    def list_workspaces(self) -> List[str]:
        result = self._terraform("workspace", "list", "-no-color")
        return [line.replace("*", "").strip() for line in result.stdout.splitlines() if line.strip()]

    def select_workspace(self, name: str, create: bool = True) -> bool:
        """Select ``name``; returns False when it does not exist and create is off."""
        if name in self.list_workspaces():
            self._terraform("workspace", "select", "-no-color", name)
            return True
        if not create:
            return False
        self._terraform("workspace", "new", "-no-color", name)
        return True

    def outputs(self) -> Dict[str, Any]:
        result = self._terraform("output", "-json", "-no-color")
        raw = json.loads(result.stdout or "{}")
        return {key: value.get("value") for key, value in raw.items()}

    def state_resources(self) -> List[str]:
        result = self._terraform("state", "list", "-no-color", check=False)
        if result.returncode != 0:
            if "No state file" in result.output:
                return []
            raise CommandError(f"terraform state list failed: {result.stderr.strip()}", result=result)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def _handle_from_outputs(self, request: DeploymentRequest, outputs: Dict[str, Any]) -> InfrastructureHandle:
        missing = [name for name in REQUIRED_OUTPUTS if not outputs.get(name)]
        if missing:
            raise ProvisionError(f"Terraform outputs missing: {', '.join(missing)}",
                                 details={"outputs": sorted(outputs)})
        return InfrastructureHandle(
            cluster_name=outputs["cluster_name"],
            registry_url=outputs["ecr_repository_url"],
            network_id=outputs["vpc_id"],
            region=request.region,
            resource_prefix=request.resource_prefix,
        )

    @log_execution_time
    def plan(self, request: DeploymentRequest) -> PlanSummary:
        """Write the plan file and summarize it; PlanSummary() when nothing changes."""
        plan_file = self._plan_file(request)
        result = self._terraform(
            "plan", "-input=false", "-no-color", "-detailed-exitcode",
            f"-lock-timeout={self.lock_timeout}", f"-out={plan_file.name}",
            *self._var_args(request),
            ok_codes=(PLAN_NO_CHANGES, PLAN_HAS_CHANGES),
        )
        if result.returncode == PLAN_NO_CHANGES:
            plan_file.unlink(missing_ok=True)
            return PlanSummary()

        shown = self._terraform("show", "-json", "-no-color", plan_file.name)
        return summarize_plan(json.loads(shown.stdout or "{}"))

    @log_operation("Terraform infrastructure convergence")
    def ensure_infrastructure(self, request: DeploymentRequest,
                              confirm: Optional[Callable[[PlanSummary], bool]] = None) -> InfrastructureHandle:
        """Converge the workspace for ``request`` and return its handle.

        "No changes" skips apply entirely, so repeated calls are idempotent.
        An interrupted earlier run is resumed because the plan is always made
        against the remote state, never a local marker.
        """
        try:
            self.init()
            self.select_workspace(request.resource_prefix)
            summary = self.plan(request)

            if summary.has_changes:
                logger.info(f"📋 Terraform plan for {request.resource_prefix}: {summary.describe()}")
                if summary.network_replacements and not request.allow_network_changes:
                    raise ProvisionError(
                        "Plan replaces or deletes network resources; re-run with "
                        "--allow-network-changes to confirm: " + ", ".join(summary.network_replacements),
                        details={"network_replacements": summary.network_replacements},
                    )
                if confirm is not None and not confirm(summary):
                    raise RunCancelled("infrastructure changes declined by operator")

                plan_file = self._plan_file(request)
                self._terraform("apply", "-input=false", "-no-color",
                                f"-lock-timeout={self.lock_timeout}", plan_file.name)
                plan_file.unlink(missing_ok=True)
            else:
                logger.info(f"✅ Infrastructure for {request.resource_prefix} already up to date")

            return self._handle_from_outputs(request, self.outputs())
        except ProvisionError:
            raise
        except DeploymentError as e:
            raise ProvisionError(e.message, transient=e.transient, details=e.details) from e

    def read_handle(self, request: DeploymentRequest) -> Optional[InfrastructureHandle]:
        """Handle of existing infrastructure, or None when nothing is provisioned."""
        try:
            self.init()
            if not self.select_workspace(request.resource_prefix, create=False):
                return None
            outputs = self.outputs()
        except DeploymentError as e:
            raise ProvisionError(f"Cannot read Terraform state: {e.message}",
                                 transient=e.transient, details=e.details) from e
        if not all(outputs.get(name) for name in REQUIRED_OUTPUTS):
            return None
        return self._handle_from_outputs(request, outputs)

    @log_operation("Terraform infrastructure destroy")
    def destroy_infrastructure(self, request: DeploymentRequest) -> DestroySummary:
        """Destroy everything in the request's workspace.

        Safe on partial or already-destroyed infrastructure: a missing
        workspace or empty state is success with zero resources.
        """
        try:
            self.init()
            if not self.select_workspace(request.resource_prefix, create=False):
                logger.info(f"ℹ️ No workspace {request.resource_prefix}; nothing to destroy")
                return DestroySummary(resources_destroyed=0)

            resources = self.state_resources()
            if resources:
                logger.info(f"🗑️ Destroying {len(resources)} resources in {request.resource_prefix}")
                self._terraform("destroy", "-auto-approve", "-input=false", "-no-color",
                                f"-lock-timeout={self.lock_timeout}", *self._var_args(request))
            else:
                logger.info(f"ℹ️ Workspace {request.resource_prefix} holds no resources")

            self._terraform("workspace", "select", "-no-color", "default")
            self._terraform("workspace", "delete", "-no-color", request.resource_prefix)
            self._plan_file(request).unlink(missing_ok=True)
            return DestroySummary(resources_destroyed=len(resources), workspace_removed=True)
        except DeploymentError as e:
            raise DestroyError(e.message, transient=e.transient, details=e.details) from e
