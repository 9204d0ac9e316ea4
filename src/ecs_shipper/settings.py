# src/ecs_shipper/settings.py
from typing import Optional, List, Dict
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

from ecs_shipper.errors import ConfigurationError

MOCK_ACCOUNT_ID = "123456789012"
VALID_MODES = ["aws-mock", "aws-prod"]
VALID_LAUNCH_TYPES = ["FARGATE", "EC2"]


class Settings(BaseSettings):
    """
    Single source of truth for all deployment settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from ecs_shipper.settings import get_settings
        settings = get_settings()
        image = settings.image_uri
    """

    # Application Settings
    app_name: str = Field(
        default="demo-app",
        description="Application name, used for tags and derived resource names"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: aws-mock (local emulator) or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="ap-southeast-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected if not provided)"
    )

    # ECR Configuration
    ecr_repo_name: str = Field(
        default="demo-app",
        description="ECR repository name"
    )

    image_tag: str = Field(
        default="latest",
        description="Tag pushed on every deployment"
    )

    # ECS Configuration
    cluster_name: str = Field(default="demo-cluster")
    service_name: str = Field(default="demo-service")
    task_family: str = Field(default="demo-task")
    container_name: str = Field(default="demo-app")

    task_cpu: str = Field(
        default="256",
        description="Task CPU units (string, as the ECS API expects)"
    )

    task_memory: str = Field(
        default="512",
        description="Task memory in MiB (string, as the ECS API expects)"
    )

    container_port: int = Field(
        default=80,
        description="Port published by the task definition's port mapping"
    )

    app_port: int = Field(
        default=80,
        description="Port the application inside the container listens on"
    )

    desired_count: int = Field(default=1)

    launch_type: str = Field(default="FARGATE")

    # Networking (comma separated; empty means discover from the default VPC)
    subnet_ids: str = Field(default="")
    security_group_ids: str = Field(default="")
    assign_public_ip: bool = Field(default=True)

    # IAM / Logs
    execution_role_name: str = Field(
        default="ecsTaskExecutionRole",
        description="Role ECS assumes to pull the image and ship logs"
    )

    log_group_name: Optional[str] = Field(default=None)

    log_retention_days: int = Field(default=30)

    # Build Configuration
    build_context: str = Field(default=".")
    dockerfile: str = Field(default="Dockerfile")

    # Workflow Configuration
    deploy_branch: str = Field(default="main")
    workflow_path: str = Field(default=".github/workflows/deploy.yml")

    delete_previous_image: bool = Field(
        default=True,
        description="Delete the image holding the target tag before pushing (best effort)"
    )

    wait_for_stable: bool = Field(default=False)

    # State
    state_file: str = Field(default=".deployment_state.json")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        if v not in VALID_MODES:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {VALID_MODES}")
        return v

    @field_validator('launch_type', mode='before')
    @classmethod
    def normalize_launch_type(cls, v):
        """Accept launch types in any case."""
        if isinstance(v, str):
            v = v.upper()
        if v not in VALID_LAUNCH_TYPES:
            raise ValueError(f"Invalid launch_type: {v}. Must be one of {VALID_LAUNCH_TYPES}")
        return v

    @field_validator('container_port', 'app_port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError(f"Port {v} is outside 1..65535")
        return v

    @field_validator('desired_count')
    @classmethod
    def validate_desired_count(cls, v):
        if v < 0:
            raise ValueError("desired_count cannot be negative")
        return v

    @model_validator(mode='after')
    def set_endpoint_url_based_on_mode(self):
        """Auto-set emulator endpoint and credentials for aws-mock if not explicitly provided."""
        if self.deployment_mode == "aws-mock":
            if self.aws_endpoint_url is None:
                self.aws_endpoint_url = "http://localhost:5000"
            if self.aws_access_key_id is None:
                self.aws_access_key_id = "mock"
            if self.aws_secret_access_key is None:
                self.aws_secret_access_key = "mock"
        return self

    @property
    def account_id(self) -> str:
        """Get AWS account ID with auto-detection fallback."""
        if self.aws_account_id:
            return self.aws_account_id

        if self.deployment_mode == "aws-mock":
            return MOCK_ACCOUNT_ID

        try:
            from ecs_shipper.aws.clients import get_sts_client
            account_id = get_sts_client(self).get_caller_identity()['Account']
        except Exception as e:
            raise ConfigurationError(
                f"Could not detect AWS account ID ({e}); set AWS_ACCOUNT_ID"
            ) from e

        # Cache so the registry host stays stable for the whole run
        self.aws_account_id = account_id
        return account_id

    @property
    def ecr_registry(self) -> str:
        """Get ECR registry URL."""
        return f"{self.account_id}.dkr.ecr.{self.aws_region}.amazonaws.com"

    @property
    def repository_uri(self) -> str:
        return f"{self.ecr_registry}/{self.ecr_repo_name}"

    @property
    def image_uri(self) -> str:
        """Fully qualified image reference pushed by the pipeline."""
        return f"{self.repository_uri}:{self.image_tag}"

    @property
    def resolved_log_group(self) -> str:
        return self.log_group_name or f"/ecs/{self.task_family}"

    @property
    def subnet_id_list(self) -> List[str]:
        return [s.strip() for s in self.subnet_ids.split(",") if s.strip()]

    @property
    def security_group_id_list(self) -> List[str]:
        return [s.strip() for s in self.security_group_ids.split(",") if s.strip()]

    def get_environment_dict(self) -> Dict[str, str]:
        """Get configuration as a dictionary suitable for a subprocess environment.

        Returns:
            Dictionary of environment variables
        """
        env_dict = {
            'DEPLOYMENT_MODE': self.deployment_mode,
            'AWS_DEFAULT_REGION': self.aws_region,
            'ECR_REPO_NAME': self.ecr_repo_name,
            'IMAGE_TAG': self.image_tag,
            'CLUSTER_NAME': self.cluster_name,
            'SERVICE_NAME': self.service_name,
            'TASK_FAMILY': self.task_family,
            'CONTAINER_PORT': str(self.container_port),
            'LOG_LEVEL': self.log_level,
        }

        # Only include credentials and endpoint for the emulator
        if self.deployment_mode == 'aws-mock':
            env_dict.update({
                'AWS_ENDPOINT_URL': self.aws_endpoint_url or '',
                'AWS_ACCESS_KEY_ID': self.aws_access_key_id or 'mock',
                'AWS_SECRET_ACCESS_KEY': self.aws_secret_access_key or 'mock',
            })

        return env_dict

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.aws-mock", ".env.aws-prod"),
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


def get_settings_with_env_file(env_file: Optional[str] = None) -> Settings:
    """
    Get settings instance after loading an extra .env file.

    The file is loaded into the process environment with python-dotenv
    before the cache is cleared, so every later get_settings() call
    sees the same values.

    Args:
        env_file: Path to .env file (e.g., '.env.aws-prod')

    Returns:
        Settings instance with loaded environment
    """
    if env_file:
        env_path = Path(env_file)
        if not env_path.exists():
            raise ConfigurationError(f"Environment file not found: {env_path}")
        load_dotenv(env_path, override=True)

    get_settings.cache_clear()
    return get_settings()
