import boto3
import pytest
from moto import mock_aws

from kudos_deploy.config.settings import get_settings
from kudos_deploy.utils.aws_clients import AWSClientManager
from tests.fixtures.fake_adapters import fake_clock, fake_poller  # noqa: F401
from tests.fixtures.fake_runner import fake_terraform_cli, runner  # noqa: F401

TEST_REGION = "us-east-1"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings and AWS clients per test, with locks under tmp_path."""
    monkeypatch.setenv("LOCK_DIR", str(tmp_path / "locks"))
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("REPORT_DIR", raising=False)
    get_settings.cache_clear()
    AWSClientManager.reset()
    yield
    get_settings.cache_clear()
    AWSClientManager.reset()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        AWSClientManager.reset()
        yield
        AWSClientManager.reset()


@pytest.fixture
def ecr_repository(mocked_aws):
    ecr = boto3.client("ecr", region_name=TEST_REGION)
    repo = ecr.create_repository(repositoryName="demo-dev")["repository"]
    return repo["repositoryUri"]
