import pytest

from kudos_deploy.config.settings import Settings
from kudos_deploy.models import DeploymentRequest, ImageReference, WorkloadSpec, make_resource_prefix


def test_resource_prefix_is_dns_safe():
    assert make_resource_prefix("My_App", "Dev") == "my-app-dev"
    assert len(make_resource_prefix("a" * 80, "dev")) <= 63


def test_request_namespace_matches_prefix():
    request = DeploymentRequest(app_name="demo", environment="dev", region="us-east-1")

    assert request.resource_prefix == "demo-dev"
    assert request.namespace == "demo-dev"


@pytest.mark.parametrize("kwargs", [
    {"replicas": 0},
    {"min_nodes": 0},
    {"min_nodes": 4, "max_nodes": 3},
    {"region": ""},
])
def test_invalid_request_rejected(kwargs):
    values = {"app_name": "demo", "environment": "dev", "region": "us-east-1"}
    values.update(kwargs)
    with pytest.raises(ValueError):
        DeploymentRequest(**values)


def test_terraform_desired_nodes_clamped():
    request = DeploymentRequest(app_name="demo", environment="dev", region="us-east-1",
                                replicas=10, min_nodes=1, max_nodes=3)

    variables = request.terraform_variables()

    assert variables["node_desired_size"] == 3
    assert variables["aws_region"] == "us-east-1"


def test_spec_hash_changes_with_image():
    base = dict(name="demo", namespace="demo-dev", replicas=2)
    first = WorkloadSpec(image=ImageReference("demo", "abc123"), **base)
    same = WorkloadSpec(image=ImageReference("demo", "abc123"), **base)
    other = WorkloadSpec(image=ImageReference("demo", "def456"), **base)

    assert first.spec_hash() == same.spec_hash()
    assert first.spec_hash() != other.spec_hash()


def test_image_pinned_uri():
    assert ImageReference("demo", "abc123", "sha256:ff").pinned_uri == "demo@sha256:ff"
    assert ImageReference("demo", "abc123").pinned_uri == "demo:abc123"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("APP_NAME", "shop")
    monkeypatch.setenv("ENVIRONMENT", "staging")
    monkeypatch.setenv("ROLLOUT_TIMEOUT", "120")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.resource_prefix == "shop-staging"
    assert settings.rollout_timeout == 120
    assert settings.log_level == "DEBUG"
