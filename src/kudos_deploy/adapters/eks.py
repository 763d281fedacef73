"""EKS cluster validation and scoped kubeconfig acquisition."""
import logging
import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from kudos_deploy.adapters.kubernetes import KubernetesAdapter
from kudos_deploy.errors import AuthError, DeploymentError, ProvisionError
from kudos_deploy.models import InfrastructureHandle
from kudos_deploy.utils.aws_clients import get_ecr_client, get_eks_client, is_not_found, is_throttled
from kudos_deploy.utils.decorators import log_operation
from kudos_deploy.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

TRANSITIONAL_CLUSTER_STATES = {"CREATING", "UPDATING", "PENDING"}


class EksAdapter:
    """Validates a handle against the AWS APIs and configures cluster access."""

    def __init__(self, runner: Optional[CommandRunner] = None,
                 kube: Optional[KubernetesAdapter] = None):
        self.runner = runner or CommandRunner()
        self.kube = kube or KubernetesAdapter(self.runner)

    def describe(self, handle: InfrastructureHandle) -> Dict[str, Any]:
        """Confirm the cluster is ACTIVE and the registry exists.

        Raises:
            ProvisionError: transient while the cluster is still converging,
                permanent when it is missing or failed
        """
        eks = get_eks_client(handle.region)
        ecr = get_ecr_client(handle.region)
        try:
            cluster = eks.describe_cluster(name=handle.cluster_name)["cluster"]
        except ClientError as e:
            if is_not_found(e):
                raise ProvisionError(f"EKS cluster {handle.cluster_name} does not exist") from e
            raise ProvisionError(f"Cannot describe cluster {handle.cluster_name}: {e}",
                                 transient=is_throttled(e)) from e
        except BotoCoreError as e:
            raise ProvisionError(f"Cannot reach EKS API: {e}", transient=True) from e

        status = cluster.get("status")
        if status in TRANSITIONAL_CLUSTER_STATES:
            raise ProvisionError(f"Cluster {handle.cluster_name} is {status}", transient=True,
                                 details={"status": status})
        if status != "ACTIVE":
            raise ProvisionError(f"Cluster {handle.cluster_name} is {status}", details={"status": status})

        repository_name = handle.registry_url.split("/", 1)[-1]
        try:
            ecr.describe_repositories(repositoryNames=[repository_name])
        except ClientError as e:
            if is_not_found(e):
                raise ProvisionError(f"ECR repository {repository_name} does not exist") from e
            raise ProvisionError(f"Cannot describe repository {repository_name}: {e}",
                                 transient=is_throttled(e)) from e

        return {
            "status": status,
            "endpoint": cluster.get("endpoint"),
            "version": cluster.get("version"),
            "repository": repository_name,
        }

    @log_operation("EKS cluster authentication")
    def authenticate(self, handle: InfrastructureHandle, stack: ExitStack) -> InfrastructureHandle:
        """Write a private kubeconfig for the cluster and return the handle carrying it.

        The kubeconfig lives in a temporary directory registered on ``stack``;
        it is removed when the caller closes the stack, so the operator's own
        ``~/.kube/config`` is never touched.
        """
        workdir = tempfile.mkdtemp(prefix=f"kudos-deploy-{handle.resource_prefix}-")
        stack.callback(shutil.rmtree, workdir, True)
        kubeconfig = str(Path(workdir) / "config")

        try:
            self.runner.run([
                "aws", "eks", "update-kubeconfig",
                "--region", handle.region,
                "--name", handle.cluster_name,
                "--kubeconfig", kubeconfig,
                "--alias", handle.resource_prefix,
            ])
        except DeploymentError as e:
            raise AuthError(f"update-kubeconfig failed for {handle.cluster_name}: {e.message}",
                            transient=e.transient, details=e.details) from e

        authenticated = replace(handle, kubeconfig=kubeconfig)
        node_count = self.kube.verify_access(authenticated)
        logger.info(f"✅ Connected to cluster {handle.cluster_name} with {node_count} worker nodes")
        return authenticated
