"""Value objects threaded between deployment phases."""
import hashlib
import json
import re
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Optional

_DNS_UNSAFE = re.compile(r"[^a-z0-9-]+")


def make_resource_prefix(app_name: str, environment: str) -> str:
    """Build the DNS-safe prefix shared by the workspace, namespace and lock."""
    raw = f"{app_name}-{environment}".lower()
    prefix = _DNS_UNSAFE.sub("-", raw).strip("-")
    return prefix[:63]


@dataclass(frozen=True)
class DeploymentRequest:
    """Immutable input to one orchestrator run."""
    app_name: str
    environment: str
    region: str
    replicas: int = 2
    min_nodes: int = 1
    max_nodes: int = 3
    build_context: str = "."
    registry: Optional[str] = None
    image_tag: Optional[str] = None
    allow_network_changes: bool = False

    def __post_init__(self):
        if not self.app_name or not self.environment:
            raise ValueError("app_name and environment are required")
        if not self.region:
            raise ValueError("region is required")
        if self.replicas < 1:
            raise ValueError(f"replicas must be at least 1, got {self.replicas}")
        if self.min_nodes < 1 or self.min_nodes > self.max_nodes:
            raise ValueError(
                f"node bounds must satisfy 1 <= min <= max, got {self.min_nodes}..{self.max_nodes}"
            )

    @property
    def resource_prefix(self) -> str:
        return make_resource_prefix(self.app_name, self.environment)

    @property
    def namespace(self) -> str:
        return self.resource_prefix

    def terraform_variables(self) -> Dict[str, Any]:
        """Variable set handed to ``terraform plan``."""
        desired = max(self.min_nodes, min(self.replicas, self.max_nodes))
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "aws_region": self.region,
            "node_min_size": self.min_nodes,
            "node_max_size": self.max_nodes,
            "node_desired_size": desired,
        }


@dataclass(frozen=True)
class InfrastructureHandle:
    """Cached view of provisioned infrastructure; Terraform state is authoritative."""
    cluster_name: str
    registry_url: str
    network_id: str
    region: str
    resource_prefix: str
    kubeconfig: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.kubeconfig is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImageReference:
    """An image confirmed present in the registry."""
    repository: str
    tag: str
    digest: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def pinned_uri(self) -> str:
        """Digest-pinned reference when the digest is known."""
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return self.uri


@dataclass(frozen=True)
class WorkloadSpec:
    """Desired state of the application Deployment and its Service."""
    name: str
    namespace: str
    image: ImageReference
    replicas: int
    container_port: int = 80
    cpu_request: str = "100m"
    memory_request: str = "128Mi"
    cpu_limit: str = "500m"
    memory_limit: str = "512Mi"
    readiness_probe_path: str = "/"
    liveness_probe_path: str = "/"
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def service_name(self) -> str:
        return f"{self.name}-service"

    @property
    def selector(self) -> Dict[str, str]:
        return {"app": self.name}

    def spec_hash(self) -> str:
        """Stable digest of everything that ends up in the rendered manifest."""
        payload = asdict(self)
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class DestroySummary:
    """What a destroy call actually removed."""
    resources_destroyed: int
    workspace_removed: bool = False
