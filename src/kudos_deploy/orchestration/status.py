"""Read-only summary of what is currently deployed for a request."""
import logging
from contextlib import ExitStack
from typing import Any, Dict

from kudos_deploy.errors import DeploymentError
from kudos_deploy.models import DeploymentRequest
from kudos_deploy.monitoring.checks import rollout_finished, summarize_rollout

logger = logging.getLogger(__name__)


def collect_status(request: DeploymentRequest, terraform, eks, kube) -> Dict[str, Any]:
    """Cluster, deployment and endpoint state, without changing anything.

    Errors are reported in the result instead of raised, so a half-built
    environment still produces a useful summary.
    """
    status: Dict[str, Any] = {
        "resource_prefix": request.resource_prefix,
        "infrastructure": None,
        "cluster": None,
        "deployment": None,
        "endpoint": None,
        "errors": [],
    }

    try:
        handle = terraform.read_handle(request)
    except DeploymentError as e:
        status["errors"].append(e.to_dict())
        return status
    if handle is None:
        logger.info(f"ℹ️ No infrastructure found for {request.resource_prefix}")
        return status
    status["infrastructure"] = handle.to_dict()

    try:
        status["cluster"] = eks.describe(handle)
    except DeploymentError as e:
        status["errors"].append(e.to_dict())
        return status

    with ExitStack() as stack:
        try:
            handle = eks.authenticate(handle, stack)
            deployment = kube.get_deployment(handle, request.app_name, request.namespace)
            if deployment is not None:
                summary = summarize_rollout(deployment)
                summary["complete"] = rollout_finished(summary)
                status["deployment"] = summary

            service = kube.get_service(handle, f"{request.app_name}-service", request.namespace)
            ingress = ((service or {}).get("status", {}).get("loadBalancer", {}).get("ingress") or [])
            if ingress:
                host = ingress[0].get("hostname") or ingress[0].get("ip")
                status["endpoint"] = f"http://{host}"
        except DeploymentError as e:
            status["errors"].append(e.to_dict())

    return status
