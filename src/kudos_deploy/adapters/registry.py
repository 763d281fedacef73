"""Container build and publish to ECR."""
import base64
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from kudos_deploy.errors import AuthError, BuildError, DeploymentError
from kudos_deploy.models import ImageReference
from kudos_deploy.utils.aws_clients import get_ecr_client, is_not_found, is_throttled
from kudos_deploy.utils.decorators import log_execution_time, log_operation, retry
from kudos_deploy.utils.shell import CommandRunner

logger = logging.getLogger(__name__)


def derive_image_tag(runner: CommandRunner, context_path: str) -> str:
    """Short git SHA of the build context, falling back to a timestamp."""
    try:
        result = runner.run(["git", "rev-parse", "--short", "HEAD"], cwd=context_path, timeout=30)
        sha = result.stdout.strip()
        if sha:
            return sha
    except DeploymentError as e:
        logger.debug(f"No git revision for {context_path}: {e}")
    return time.strftime("%Y%m%d%H%M%S", time.gmtime())


class RegistryAdapter:
    """Builds the app image with docker and pushes it to an ECR repository."""

    def __init__(self, region: str, runner: Optional[CommandRunner] = None,
                 dockerfile: str = "Dockerfile", push_attempts: int = 3,
                 push_backoff: float = 5.0, sleep: Callable[[float], None] = time.sleep):
        self.region = region
        self.runner = runner or CommandRunner()
        self.dockerfile = dockerfile
        self.push_attempts = push_attempts
        self.push_backoff = push_backoff
        self.sleep = sleep
        self.last_push_attempts = 0

    def login(self, registry: str) -> None:
        """``docker login`` with a token from ``ecr.get_authorization_token``."""
        ecr = get_ecr_client(self.region)
        try:
            token_data = ecr.get_authorization_token()["authorizationData"][0]
        except ClientError as e:
            raise AuthError(f"Cannot get ECR authorization token: {e}", transient=is_throttled(e)) from e
        except BotoCoreError as e:
            raise AuthError(f"Cannot reach ECR API: {e}", transient=True) from e

        token = base64.b64decode(token_data["authorizationToken"]).decode("utf-8")
        username, password = token.split(":", 1)
        registry_host = registry.split("/", 1)[0]
        try:
            self.runner.run(["docker", "login", "--username", username, "--password-stdin", registry_host],
                            input=password)
        except DeploymentError as e:
            raise AuthError(f"docker login to {registry_host} failed: {e.message}",
                            transient=e.transient, details=e.details) from e
        logger.info(f"🔐 Logged into ECR registry {registry_host}")

    @log_execution_time
    def build(self, context_path: str, image_uri: str) -> None:
        """Build the image; build failures are permanent and never retried."""
        context = Path(context_path)
        dockerfile = context / self.dockerfile
        if not context.is_dir():
            raise BuildError(f"Build context {context_path} is not a directory")
        if not dockerfile.is_file():
            raise BuildError(f"No {self.dockerfile} in build context {context_path}")

        try:
            self.runner.run(["docker", "build", "-f", str(dockerfile), "-t", image_uri, str(context)])
        except DeploymentError as e:
            raise BuildError(f"docker build failed: {e.message}", details=e.details) from e
        logger.info(f"🐳 Built image {image_uri}")

    def push(self, registry: str, image_uri: str) -> int:
        """Push with up to ``push_attempts`` tries, re-authenticating before each retry."""
        def relogin(attempt, error):
            logger.info(f"Refreshing ECR credentials before push attempt {attempt + 1}")
            self.login(registry)

        @retry(max_attempts=self.push_attempts, delay=self.push_backoff, backoff="linear",
               before_retry=relogin, sleep=self.sleep, logger_name=__name__)
        def _push():
            try:
                self.runner.run(["docker", "push", image_uri])
            except DeploymentError as e:
                raise BuildError(f"docker push failed: {e.message}",
                                 transient=e.transient, details=e.details) from e

        try:
            _push()
        finally:
            self.last_push_attempts = _push.last_attempts
        logger.info(f"📤 Pushed {image_uri} after {self.last_push_attempts} attempt(s)")
        return self.last_push_attempts

    def resolve_digest(self, registry: str, tag: str) -> str:
        """Confirm the tag exists in ECR and return its digest."""
        ecr = get_ecr_client(self.region)
        repository_name = registry.split("/", 1)[-1]
        try:
            response = ecr.describe_images(repositoryName=repository_name, imageIds=[{"imageTag": tag}])
        except ClientError as e:
            if is_not_found(e):
                raise BuildError(f"Image {repository_name}:{tag} not found in ECR after push") from e
            raise BuildError(f"Cannot describe image {repository_name}:{tag}: {e}",
                             transient=is_throttled(e)) from e
        details = response.get("imageDetails") or []
        if not details:
            raise BuildError(f"Image {repository_name}:{tag} not found in ECR after push")
        return details[0]["imageDigest"]

    @log_operation("Container build and publish")
    def build_and_publish(self, context_path: str, registry: str, tag: str) -> ImageReference:
        """Build, push and confirm the image; returns a reference safe to deploy."""
        image_uri = f"{registry}:{tag}"
        self.build(context_path, image_uri)

        login = retry(max_attempts=self.push_attempts, delay=self.push_backoff, backoff="linear",
                      sleep=self.sleep, logger_name=__name__)(self.login)
        login(registry)
        self.push(registry, image_uri)
        digest = self.resolve_digest(registry, tag)
        return ImageReference(repository=registry, tag=tag, digest=digest)
