"""kubectl adapter: submit the workload and read back its live state."""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from kudos_deploy.adapters.manifests import SPEC_HASH_ANNOTATION, render_workload
from kudos_deploy.errors import ApplyError, AuthError, CommandError, DeploymentError
from kudos_deploy.models import InfrastructureHandle, WorkloadSpec
from kudos_deploy.utils.decorators import log_execution_time, log_operation
from kudos_deploy.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

_NOT_FOUND = re.compile(r"\(NotFound\)|not found", re.IGNORECASE)
_DENIED = re.compile(r"forbidden|unauthorized|must be logged in|provide credentials", re.IGNORECASE)


class KubernetesAdapter:
    """Thin wrapper around ``kubectl`` scoped to a handle's private kubeconfig."""

    def __init__(self, runner: Optional[CommandRunner] = None, request_timeout: str = "30s"):
        self.runner = runner or CommandRunner()
        self.request_timeout = request_timeout

    def _kubectl(self, handle: InfrastructureHandle, *args: str, input: Optional[str] = None,
                 error_cls=ApplyError):
        if not handle.authenticated:
            raise AuthError(f"No cluster credentials for {handle.cluster_name}; authenticate first")

        command = ["kubectl", f"--request-timeout={self.request_timeout}", *args]
        try:
            return self.runner.run(command, input=input, env={"KUBECONFIG": handle.kubeconfig})
        except CommandError as e:
            output = e.result.output if e.result is not None else str(e)
            if _DENIED.search(output):
                raise AuthError(f"Cluster denied access: {e.message}", details=e.details) from e
            raise error_cls(e.message, transient=e.transient, details=e.details) from e

    def _get_json(self, handle: InfrastructureHandle, *args: str) -> Optional[Dict[str, Any]]:
        """``kubectl get ... -o json``; None when the object does not exist."""
        try:
            result = self._kubectl(handle, "get", *args, "-o", "json")
        except AuthError:
            raise
        except DeploymentError as e:
            if _NOT_FOUND.search(e.details.get("stderr", "") or e.message):
                return None
            raise
        return json.loads(result.stdout or "{}")

    # Reads

    def get_deployment(self, handle: InfrastructureHandle, name: str, namespace: str) -> Optional[Dict[str, Any]]:
        return self._get_json(handle, "deployment", name, "-n", namespace)

    def get_service(self, handle: InfrastructureHandle, name: str, namespace: str) -> Optional[Dict[str, Any]]:
        return self._get_json(handle, "service", name, "-n", namespace)

    def list_nodes(self, handle: InfrastructureHandle) -> List[Dict[str, Any]]:
        data = self._get_json(handle, "nodes") or {}
        return data.get("items", [])

    def list_pods(self, handle: InfrastructureHandle, app_name: str, namespace: str) -> List[Dict[str, Any]]:
        data = self._get_json(handle, "pods", "-l", f"app={app_name}", "-n", namespace) or {}
        return data.get("items", [])

    def verify_access(self, handle: InfrastructureHandle) -> int:
        """Fail with AuthError unless the API server answers; returns the node count."""
        try:
            return len(self.list_nodes(handle))
        except AuthError:
            raise
        except DeploymentError as e:
            raise AuthError(f"Cannot reach cluster {handle.cluster_name}: {e.message}",
                            transient=e.transient, details=e.details) from e

    # Writes

    @log_operation("Kubernetes workload apply")
    def apply_workload(self, handle: InfrastructureHandle, spec: WorkloadSpec) -> bool:
        """Submit the workload; returns False when the live spec already matches."""
        live = self.get_deployment(handle, spec.name, spec.namespace)
        desired_hash = spec.spec_hash()
        if live is not None:
            live_hash = live.get("metadata", {}).get("annotations", {}).get(SPEC_HASH_ANNOTATION)
            if live_hash == desired_hash:
                logger.info(f"Workload {spec.namespace}/{spec.name} unchanged ({desired_hash}); skipping apply")
                return False
            logger.info(f"Rolling update of {spec.namespace}/{spec.name}: {live_hash} -> {desired_hash}")
        else:
            logger.info(f"Creating workload {spec.namespace}/{spec.name} with image {spec.image.uri}")

        manifest = json.dumps(render_workload(spec))
        result = self._kubectl(handle, "apply", "-f", "-", input=manifest)
        for line in result.stdout.splitlines():
            logger.info(f"   {line}")
        return True

    @log_execution_time
    def delete_workload(self, handle: InfrastructureHandle, app_name: str, namespace: str) -> int:
        """Delete the app's Deployment and Service; returns how many objects went away."""
        result = self._kubectl(
            handle, "delete", "deployment,service", "-l", f"app={app_name}",
            "-n", namespace, "--ignore-not-found=true", "--wait=true",
        )
        deleted = [line for line in result.stdout.splitlines() if line.strip().endswith("deleted")]
        for line in deleted:
            logger.info(f"   {line}")
        return len(deleted)

    def delete_namespace(self, handle: InfrastructureHandle, namespace: str) -> None:
        self._kubectl(handle, "delete", "namespace", namespace, "--ignore-not-found=true", "--wait=false")
