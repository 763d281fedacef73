"""Readiness predicates handed to ``ReadinessPoller.poll``."""
import logging
from typing import Any, Dict, Optional

import requests

from kudos_deploy.errors import ApplyError, ReadinessTimeout
from kudos_deploy.monitoring.poller import CheckResult

logger = logging.getLogger(__name__)


def _condition(obj: Dict[str, Any], kind: str) -> Optional[Dict[str, Any]]:
    for condition in obj.get("status", {}).get("conditions", []) or []:
        if condition.get("type") == kind:
            return condition
    return None


def summarize_rollout(deployment: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a Deployment object to the counters that decide rollout completion."""
    spec = deployment.get("spec", {})
    status = deployment.get("status", {})
    metadata = deployment.get("metadata", {})
    desired = spec.get("replicas", 1)
    progressing = _condition(deployment, "Progressing") or {}
    return {
        "desired": desired,
        "updated": status.get("updatedReplicas", 0),
        "ready": status.get("readyReplicas", 0),
        "available": status.get("availableReplicas", 0),
        "total": status.get("replicas", 0),
        "generation": metadata.get("generation", 0),
        "observed_generation": status.get("observedGeneration", 0),
        "progress_reason": progressing.get("reason"),
    }


def rollout_finished(summary: Dict[str, Any]) -> bool:
    """Same rule ``kubectl rollout status`` applies; surplus old pods mean still rolling."""
    return (
        summary["observed_generation"] >= summary["generation"]
        and summary["updated"] >= summary["desired"]
        and summary["total"] <= summary["updated"]
        and summary["available"] >= summary["desired"]
    )


def rollout_complete(kube, handle, name: str, namespace: str):
    """Predicate: every replica runs the new template and is available.

    Pods in transition are just "not yet"; a missing Deployment is eventual
    consistency right after apply.
    """
    def check() -> CheckResult:
        deployment = kube.get_deployment(handle, name, namespace)
        if deployment is None:
            raise ApplyError(f"deployment {namespace}/{name} not found yet", transient=True)
        summary = summarize_rollout(deployment)
        return CheckResult(rollout_finished(summary), summary)
    return check


def endpoint_assigned(kube, handle, service_name: str, namespace: str):
    """Predicate: the LoadBalancer Service reports a hostname (or IP)."""
    def check() -> CheckResult:
        service = kube.get_service(handle, service_name, namespace)
        if service is None:
            raise ApplyError(f"service {namespace}/{service_name} not found yet", transient=True)
        ingress = service.get("status", {}).get("loadBalancer", {}).get("ingress") or []
        if not ingress:
            return CheckResult(False, None)
        address = ingress[0].get("hostname") or ingress[0].get("ip")
        return CheckResult(bool(address), address)
    return check


def nodes_ready(kube, handle, minimum: int = 1):
    """Predicate: at least ``minimum`` nodes report Ready=True."""
    def check() -> CheckResult:
        nodes = kube.list_nodes(handle)
        ready = [
            n.get("metadata", {}).get("name")
            for n in nodes
            if (_condition(n, "Ready") or {}).get("status") == "True"
        ]
        return CheckResult(len(ready) >= minimum, {"ready": len(ready), "total": len(nodes), "nodes": ready})
    return check


def service_released(kube, handle, service_name: str, namespace: str):
    """Predicate: the Service (and so its load balancer) is gone."""
    def check() -> CheckResult:
        service = kube.get_service(handle, service_name, namespace)
        return CheckResult(service is None, "absent" if service is None else "terminating")
    return check


def http_ok(url: str, request_timeout: float = 5.0, session: Optional[requests.Session] = None):
    """Predicate: GET ``url`` answers 200.

    DNS for a fresh ELB hostname takes minutes to propagate, so connection
    failures are transient.
    """
    http = session or requests

    def check() -> CheckResult:
        try:
            response = http.get(url, timeout=request_timeout, allow_redirects=True)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ReadinessTimeout(f"{url} not reachable yet: {e.__class__.__name__}", transient=True) from e
        except requests.RequestException as e:
            raise ReadinessTimeout(f"Invalid request for {url}: {e}") from e
        return CheckResult(response.status_code == 200, response.status_code)
    return check
