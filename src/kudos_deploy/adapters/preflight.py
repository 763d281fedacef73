"""Prerequisite checks run before touching any infrastructure."""
import logging
import shutil
from typing import Dict, Iterable

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from kudos_deploy.errors import PrerequisiteError
from kudos_deploy.utils.aws_clients import get_sts_client

logger = logging.getLogger(__name__)

INSTALL_HINTS = {
    "aws": "https://aws.amazon.com/cli/",
    "terraform": "https://www.terraform.io/downloads",
    "docker": "https://www.docker.com/products/docker-desktop",
    "kubectl": "https://kubernetes.io/docs/tasks/tools/",
    "git": "https://git-scm.com/downloads",
}

PROVISION_TOOLS = ("aws", "terraform", "kubectl")
DEPLOY_TOOLS = ("aws", "terraform", "kubectl", "docker")
DESTROY_TOOLS = ("aws", "terraform", "kubectl")


def check_tools(names: Iterable[str]) -> None:
    """Raise PrerequisiteError listing every tool missing from PATH."""
    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        hints = "; ".join(f"{name}: {INSTALL_HINTS.get(name, 'install it')}" for name in missing)
        raise PrerequisiteError(f"Required tools not installed: {', '.join(missing)} ({hints})",
                                details={"missing": missing})
    logger.info("✅ All tools are installed")


def check_credentials(region: str) -> Dict[str, str]:
    """Verify AWS credentials via STS; returns account and caller ARN."""
    try:
        identity = get_sts_client(region).get_caller_identity()
    except NoCredentialsError as e:
        raise PrerequisiteError("AWS credentials not configured; run: aws configure") from e
    except ClientError as e:
        raise PrerequisiteError(f"AWS credentials rejected: {e}") from e
    except BotoCoreError as e:
        raise PrerequisiteError(f"Cannot reach AWS STS: {e}", transient=True) from e

    account = identity["Account"]
    logger.info(f"✅ Connected to AWS Account: {account} in region: {region}")
    return {"account": account, "arn": identity.get("Arn", "")}
