"""AWS utility functions and client management."""
import logging
from typing import Any, Dict, Optional, Tuple

import boto3

from kudos_deploy.config.settings import get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Singleton manager for AWS service clients, cached per (service, region)."""
    _instance = None
    _clients: Dict[Tuple[str, str], Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AWSClientManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize the client manager with settings."""
        self.settings = get_settings()
        self.default_region = self.settings.aws_region
        self.profile = self.settings.aws_profile

        logger.debug("Initializing AWSClientManager")
        logger.debug(f"  Region: {self.default_region}")
        logger.debug(f"  Profile: {self.profile}")

    def get_client(self, service_name: str, region: Optional[str] = None) -> Any:
        """Get or create an AWS service client."""
        region = region or self.default_region
        key = (service_name, region)
        if key in self._clients:
            return self._clients[key]

        try:
            if self.profile:
                session = boto3.Session(profile_name=self.profile)
                client = session.client(service_name, region_name=region)
            else:
                client = boto3.client(service_name, region_name=region)
        except Exception as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise

        self._clients[key] = client
        logger.debug(f"Created {service_name} client for {region}")
        return client

    def clear_clients(self):
        """Clear all cached clients."""
        self._clients.clear()
        logger.debug("Cleared all AWS clients")

    @classmethod
    def reset(cls):
        """Drop the singleton so the next use re-reads settings."""
        cls._clients.clear()
        cls._instance = None


# Convenience functions for common operations

def get_sts_client(region: Optional[str] = None):
    """Get the STS client."""
    return AWSClientManager().get_client('sts', region)


def get_ecr_client(region: Optional[str] = None):
    """Get the ECR client."""
    return AWSClientManager().get_client('ecr', region)


def get_eks_client(region: Optional[str] = None):
    """Get the EKS client."""
    return AWSClientManager().get_client('eks', region)


def is_not_found(error: Exception) -> bool:
    """True for botocore ClientErrors that mean 'resource does not exist'."""
    response = getattr(error, "response", None) or {}
    code = response.get("Error", {}).get("Code", "")
    return code in ("ResourceNotFoundException", "RepositoryNotFoundException",
                    "ImageNotFoundException", "NotFoundException")


def is_throttled(error: Exception) -> bool:
    """True for botocore ClientErrors that should be retried."""
    response = getattr(error, "response", None) or {}
    code = response.get("Error", {}).get("Code", "")
    return code in ("Throttling", "ThrottlingException", "RequestLimitExceeded",
                    "ServiceUnavailableException", "ServerException")
