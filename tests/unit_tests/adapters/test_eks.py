import json
import os
from contextlib import ExitStack

import boto3
import pytest

from kudos_deploy.adapters.eks import EksAdapter
from kudos_deploy.adapters.kubernetes import KubernetesAdapter
from kudos_deploy.errors import AuthError, ProvisionError
from kudos_deploy.models import InfrastructureHandle

TEST_REGION = "us-east-1"


@pytest.fixture
def eks_cluster(mocked_aws):
    eks = boto3.client("eks", region_name=TEST_REGION)
    eks.create_cluster(
        name="demo-dev",
        roleArn="arn:aws:iam::123456789012:role/demo-dev-cluster",
        resourcesVpcConfig={"subnetIds": ["subnet-1", "subnet-2"]},
    )
    return "demo-dev"


def _handle(registry_url, cluster_name="demo-dev"):
    return InfrastructureHandle(
        cluster_name=cluster_name,
        registry_url=registry_url,
        network_id="vpc-0abc",
        region=TEST_REGION,
        resource_prefix="demo-dev",
    )


@pytest.fixture
def eks(runner):
    return EksAdapter(runner=runner, kube=KubernetesAdapter(runner))


def test_describe_active_cluster(eks, eks_cluster, ecr_repository):
    described = eks.describe(_handle(ecr_repository))

    assert described["status"] == "ACTIVE"
    assert described["repository"] == "demo-dev"


def test_describe_missing_cluster_is_permanent(eks, ecr_repository):
    with pytest.raises(ProvisionError) as exc_info:
        eks.describe(_handle(ecr_repository, cluster_name="nope"))
    assert not exc_info.value.transient


def test_describe_missing_repository_fails(eks, eks_cluster):
    with pytest.raises(ProvisionError, match="repository"):
        eks.describe(_handle("123456789012.dkr.ecr.us-east-1.amazonaws.com/missing"))


def test_authenticate_writes_scoped_kubeconfig(eks, runner, ecr_repository):
    runner.on("kubectl", stdout=json.dumps({"items": [{"metadata": {"name": "node-1"}}]}))

    with ExitStack() as stack:
        handle = eks.authenticate(_handle(ecr_repository), stack)
        workdir = os.path.dirname(handle.kubeconfig)

        update = runner.calls[0]
        assert update[:3] == ["aws", "eks", "update-kubeconfig"]
        assert update[update.index("--kubeconfig") + 1] == handle.kubeconfig
        assert handle.authenticated
        assert os.path.isdir(workdir)

    assert not os.path.exists(workdir)


def test_authenticate_without_access_is_auth_error(eks, runner, ecr_repository):
    runner.on("kubectl", returncode=1, stderr="error: You must be logged in to the server (Unauthorized)")

    with ExitStack() as stack:
        with pytest.raises(AuthError):
            eks.authenticate(_handle(ecr_repository), stack)


def test_update_kubeconfig_failure_is_auth_error(eks, runner, ecr_repository):
    runner.on("aws", "eks", returncode=255, stderr="An error occurred (AccessDeniedException)")

    with ExitStack() as stack:
        with pytest.raises(AuthError):
            eks.authenticate(_handle(ecr_repository), stack)
