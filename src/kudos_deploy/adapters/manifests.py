"""Render a WorkloadSpec into Kubernetes objects."""
from typing import Any, Dict, List

from kudos_deploy.models import WorkloadSpec

SPEC_HASH_ANNOTATION = "kudos-deploy/spec-hash"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "kudos-deploy"


def _labels(spec: WorkloadSpec) -> Dict[str, str]:
    labels = {"app": spec.name, MANAGED_BY_LABEL: MANAGED_BY}
    labels.update(spec.labels)
    return labels


def render_namespace(spec: WorkloadSpec) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": spec.namespace, "labels": {MANAGED_BY_LABEL: MANAGED_BY}},
    }


def render_deployment(spec: WorkloadSpec) -> Dict[str, Any]:
    """Deployment with a rolling update strategy so old and new pods overlap."""
    labels = _labels(spec)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": spec.name,
            "namespace": spec.namespace,
            "labels": labels,
            "annotations": {SPEC_HASH_ANNOTATION: spec.spec_hash()},
        },
        "spec": {
            "replicas": spec.replicas,
            "selector": {"matchLabels": spec.selector},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 1, "maxUnavailable": 0},
            },
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": spec.name,
                            "image": spec.image.uri,
                            "ports": [{"containerPort": spec.container_port}],
                            "resources": {
                                "requests": {"cpu": spec.cpu_request, "memory": spec.memory_request},
                                "limits": {"cpu": spec.cpu_limit, "memory": spec.memory_limit},
                            },
                            "livenessProbe": {
                                "httpGet": {"path": spec.liveness_probe_path, "port": spec.container_port},
                                "initialDelaySeconds": 30,
                                "periodSeconds": 10,
                            },
                            "readinessProbe": {
                                "httpGet": {"path": spec.readiness_probe_path, "port": spec.container_port},
                                "initialDelaySeconds": 5,
                                "periodSeconds": 5,
                            },
                        }
                    ]
                },
            },
        },
    }


def render_service(spec: WorkloadSpec) -> Dict[str, Any]:
    """LoadBalancer Service; AWS assigns the public hostname asynchronously."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": spec.service_name,
            "namespace": spec.namespace,
            "labels": _labels(spec),
        },
        "spec": {
            "type": "LoadBalancer",
            "selector": spec.selector,
            "ports": [{"port": 80, "targetPort": spec.container_port, "protocol": "TCP"}],
        },
    }


def render_workload(spec: WorkloadSpec) -> Dict[str, Any]:
    """All objects as a single ``v1/List`` accepted by ``kubectl apply -f -``."""
    items: List[Dict[str, Any]] = [
        render_namespace(spec),
        render_deployment(spec),
        render_service(spec),
    ]
    return {"apiVersion": "v1", "kind": "List", "items": items}
