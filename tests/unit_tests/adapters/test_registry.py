import json

import boto3
import pytest
from botocore.exceptions import ClientError

from kudos_deploy.adapters import registry as registry_module
from kudos_deploy.adapters.registry import RegistryAdapter, derive_image_tag
from kudos_deploy.errors import AuthError, BuildError

TEST_REGION = "us-east-1"


@pytest.fixture
def build_context(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM nginx:alpine\n")
    return str(tmp_path)


@pytest.fixture
def registry(runner):
    sleeps = []
    adapter = RegistryAdapter(TEST_REGION, runner=runner, push_attempts=3, push_backoff=5.0, sleep=sleeps.append)
    adapter.sleeps = sleeps
    return adapter


def _put_image(tag):
    ecr = boto3.client("ecr", region_name=TEST_REGION)
    manifest = {
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {"mediaType": "application/vnd.docker.container.image.v1+json", "size": 7023,
                   "digest": "sha256:" + "1" * 64},
        "layers": [],
    }
    response = ecr.put_image(repositoryName="demo-dev", imageManifest=json.dumps(manifest), imageTag=tag)
    return response["image"]["imageId"]["imageDigest"]


def test_build_and_publish_returns_confirmed_digest(registry, runner, build_context, ecr_repository):
    digest = _put_image("abc123")

    image = registry.build_and_publish(build_context, ecr_repository, "abc123")

    assert image.uri == f"{ecr_repository}:abc123"
    assert image.digest == digest
    assert runner.count("docker", "build") == 1
    assert runner.count("docker", "login") == 1
    assert runner.count("docker", "push") == 1
    assert registry.last_push_attempts == 1


def test_login_sends_password_on_stdin(registry, runner, ecr_repository):
    registry.login(ecr_repository)

    login = runner.calls[-1]
    assert "--password-stdin" in login
    assert login[-1] == ecr_repository.split("/")[0]
    assert runner.inputs[-1]


def test_build_failure_is_not_retried(registry, runner, build_context, ecr_repository):
    runner.on("docker", "build", returncode=1, stderr="failed to solve: dockerfile parse error line 3")

    with pytest.raises(BuildError) as exc_info:
        registry.build_and_publish(build_context, ecr_repository, "abc123")

    assert not exc_info.value.transient
    assert runner.count("docker", "build") == 1
    assert runner.count("docker", "push") == 0


def test_missing_dockerfile_fails_before_docker(registry, runner, tmp_path):
    with pytest.raises(BuildError, match="Dockerfile"):
        registry.build(str(tmp_path), "repo:tag")
    assert runner.calls == []


def test_transient_push_retried_with_relogin(registry, runner, ecr_repository):
    runner.on("docker", "push", responses=[
        (1, "", "net/http: TLS handshake timeout"),
        (1, "", "connection reset by peer"),
        (0, "pushed", ""),
    ])

    attempts = registry.push(ecr_repository, f"{ecr_repository}:abc123")

    assert attempts == 3
    assert runner.count("docker", "push") == 3
    assert runner.count("docker", "login") == 2
    assert registry.sleeps == [5.0, 10.0]


def test_push_gives_up_after_three_attempts(registry, runner, ecr_repository):
    runner.on("docker", "push", returncode=1, stderr="503 Service Unavailable")

    with pytest.raises(BuildError) as exc_info:
        registry.push(ecr_repository, f"{ecr_repository}:abc123")

    assert exc_info.value.transient
    assert runner.count("docker", "push") == 3
    assert registry.last_push_attempts == 3


def test_permanent_push_failure_not_retried(registry, runner, ecr_repository):
    runner.on("docker", "push", returncode=1, stderr="denied: not authorized to perform ecr:PutImage")

    with pytest.raises(BuildError):
        registry.push(ecr_repository, f"{ecr_repository}:abc123")
    assert runner.count("docker", "push") == 1


def test_unconfirmed_push_is_build_error(registry, ecr_repository):
    with pytest.raises(BuildError, match="not found"):
        registry.resolve_digest(ecr_repository, "never-pushed")


def test_docker_login_failure_is_auth_error(registry, runner, ecr_repository):
    runner.on("docker", "login", returncode=1, stderr="Error response from daemon: login attempt failed")

    with pytest.raises(AuthError):
        registry.login(ecr_repository)


def test_image_tag_from_git(runner, tmp_path):
    runner.on("git", "rev-parse", stdout="abc123\n")

    assert derive_image_tag(runner, str(tmp_path)) == "abc123"


def test_image_tag_falls_back_to_timestamp(runner, tmp_path):
    runner.on("git", returncode=128, stderr="fatal: not a git repository")

    tag = derive_image_tag(runner, str(tmp_path))

    assert len(tag) == 14 and tag.isdigit()


class ThrottledOnceEcr:
    """ECR client whose first token request is throttled."""

    def __init__(self, client):
        self.client = client
        self.token_calls = 0

    def get_authorization_token(self):
        self.token_calls += 1
        if self.token_calls == 1:
            raise ClientError({"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}},
                              "GetAuthorizationToken")
        return self.client.get_authorization_token()

    def __getattr__(self, name):
        return getattr(self.client, name)


def test_throttled_login_before_push_is_retried(registry, runner, build_context, ecr_repository, monkeypatch):
    ecr = ThrottledOnceEcr(boto3.client("ecr", region_name=TEST_REGION))
    monkeypatch.setattr(registry_module, "get_ecr_client", lambda region: ecr)
    _put_image("abc123")

    image = registry.build_and_publish(build_context, ecr_repository, "abc123")

    assert image.tag == "abc123"
    assert ecr.token_calls == 2
    assert runner.count("docker", "login") == 1
    assert registry.sleeps == [5.0]
