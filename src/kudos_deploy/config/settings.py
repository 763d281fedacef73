# src/kudos_deploy/config/settings.py
from typing import Optional, Dict, Any
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Single source of truth for all deployment settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from kudos_deploy.config.settings import get_settings
        settings = get_settings()
        timeout = settings.rollout_timeout
    """

    # Application Settings
    app_name: str = Field(
        default="kudos-app",
        alias="APP_NAME",
        description="Application name, first half of the resource prefix"
    )

    environment: str = Field(
        default="dev",
        alias="ENVIRONMENT",
        description="Target environment, second half of the resource prefix"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_profile: Optional[str] = Field(
        default=None,
        alias="AWS_PROFILE"
    )

    # Terraform Configuration
    terraform_dir: str = Field(
        default="terraform",
        description="Directory holding the EKS Terraform configuration"
    )

    terraform_lock_timeout: str = Field(
        default="300s",
        description="How long Terraform waits for the remote state lock"
    )

    # Node group bounds passed to Terraform
    min_nodes: int = Field(default=1, ge=1)
    max_nodes: int = Field(default=3, ge=1)

    # Container build
    build_context: str = Field(
        default=".",
        description="Docker build context containing the Dockerfile"
    )

    dockerfile: str = Field(default="Dockerfile")

    push_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a transient docker push failure"
    )

    push_backoff_seconds: float = Field(
        default=5.0,
        description="Linear backoff step between push attempts"
    )

    # Workload Configuration
    replicas: int = Field(default=2, ge=1)
    container_port: int = Field(default=80)
    cpu_request: str = Field(default="100m")
    memory_request: str = Field(default="128Mi")
    cpu_limit: str = Field(default="500m")
    memory_limit: str = Field(default="512Mi")
    readiness_probe_path: str = Field(default="/")
    liveness_probe_path: str = Field(default="/")

    # Readiness polling (seconds)
    nodes_timeout: float = Field(default=600.0)
    nodes_interval: float = Field(default=15.0)
    rollout_timeout: float = Field(default=300.0)
    rollout_interval: float = Field(default=5.0)
    endpoint_timeout: float = Field(default=300.0)
    endpoint_interval: float = Field(default=15.0)
    http_timeout: float = Field(default=600.0)
    http_interval: float = Field(default=10.0)
    http_request_timeout: float = Field(default=5.0)
    drain_timeout: float = Field(default=180.0)
    drain_interval: float = Field(default=10.0)

    # Subprocess defaults
    command_timeout: float = Field(
        default=3600.0,
        description="Upper bound for any single CLI invocation"
    )

    # Local state
    lock_dir: str = Field(
        default=".kudos-deploy/locks",
        description="Directory for per-prefix advisory lock files"
    )

    report_dir: Optional[str] = Field(
        default=None,
        description="Write every run report as JSON into this directory"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('app_name', 'environment')
    @classmethod
    def validate_name(cls, v):
        """Names become Kubernetes and Terraform identifiers."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()

    @property
    def resource_prefix(self) -> str:
        """Default resource prefix derived from application name and environment."""
        return f"{self.app_name}-{self.environment}".lower()

    def get_environment_dict(self) -> Dict[str, Any]:
        """Get configuration as a dictionary suitable for display or subprocess use."""
        return {
            'APP_NAME': self.app_name,
            'ENVIRONMENT': self.environment,
            'AWS_DEFAULT_REGION': self.aws_region,
            'AWS_PROFILE': self.aws_profile or '',
            'TERRAFORM_DIR': self.terraform_dir,
            'BUILD_CONTEXT': self.build_context,
            'REPLICAS': self.replicas,
            'LOG_LEVEL': self.log_level,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.deploy"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
