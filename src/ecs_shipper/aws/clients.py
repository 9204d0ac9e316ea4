"""AWS client management."""
import os
import boto3
import logging
from typing import Any, Dict, Optional, Tuple
from botocore.config import Config as BotoConfig

from ecs_shipper.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _connection_key(settings: Settings) -> Tuple:
    return (
        settings.deployment_mode,
        settings.aws_region,
        settings.aws_endpoint_url,
        settings.aws_access_key_id,
        settings.aws_secret_access_key,
        os.environ.get('AWS_PROFILE'),
    )


class AWSClientManager:
    """Client manager, one instance per region/endpoint/credentials combination."""
    _instances: Dict[Tuple, "AWSClientManager"] = {}

    def __new__(cls, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        key = _connection_key(settings)
        if key not in cls._instances:
            instance = super(AWSClientManager, cls).__new__(cls)
            instance._initialize(settings)
            cls._instances[key] = instance
        return cls._instances[key]

    def _initialize(self, settings: Settings):
        """Initialize the client manager with settings."""
        self.settings = settings
        self._clients: Dict[str, Any] = {}

        # Cache commonly used values
        self.region = settings.aws_region
        self.endpoint_url = settings.aws_endpoint_url
        self.mode = settings.deployment_mode
        self.boto_config = BotoConfig(
            retries={
                "max_attempts": 10,
                "mode": "adaptive",
            },
        )

        logger.debug("Initializing AWSClientManager")
        logger.debug(f"  Mode: {self.mode}")
        logger.debug(f"  Region: {self.region}")
        logger.debug(f"  Endpoint: {self.endpoint_url}")

    @classmethod
    def reset(cls) -> None:
        """Drop every manager and cached client (settings may have changed)."""
        cls._instances.clear()

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        # Return existing client if already created
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {
            'region_name': self.region,
            'config': self.boto_config,
        }

        # Named profiles (SSO) take precedence in production
        aws_profile = os.environ.get('AWS_PROFILE')
        if aws_profile and self.mode == 'aws-prod':
            session = boto3.Session(profile_name=aws_profile)
            client = session.client(service_name, **client_kwargs)
            self._clients[service_name] = client
            logger.debug(f"Created {service_name} client using profile: {aws_profile}")
            return client

        if self.settings.aws_access_key_id:
            client_kwargs['aws_access_key_id'] = self.settings.aws_access_key_id
        if self.settings.aws_secret_access_key:
            client_kwargs['aws_secret_access_key'] = self.settings.aws_secret_access_key

        # Endpoint URL only for the local emulator
        if self.endpoint_url and self.mode == 'aws-mock':
            client_kwargs['endpoint_url'] = self.endpoint_url

        try:
            client = boto3.client(service_name, **client_kwargs)
            self._clients[service_name] = client
            logger.debug(f"Created {service_name} client in {self.region}")
            return client
        except Exception as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise


# Convenience functions for common operations

def get_ecs_client(settings: Optional[Settings] = None):
    """Get the ECS client."""
    return AWSClientManager(settings).get_client('ecs')


def get_ecr_client(settings: Optional[Settings] = None):
    """Get the ECR client."""
    return AWSClientManager(settings).get_client('ecr')


def get_logs_client(settings: Optional[Settings] = None):
    """Get the CloudWatch Logs client."""
    return AWSClientManager(settings).get_client('logs')


def get_iam_client(settings: Optional[Settings] = None):
    """Get the IAM client."""
    return AWSClientManager(settings).get_client('iam')


def get_ec2_client(settings: Optional[Settings] = None):
    """Get the EC2 client."""
    return AWSClientManager(settings).get_client('ec2')


def get_sts_client(settings: Optional[Settings] = None):
    """Get the STS client."""
    return AWSClientManager(settings).get_client('sts')


def error_code(error: Exception) -> str:
    """Extract the AWS error code from a botocore ClientError."""
    return getattr(error, 'response', {}).get('Error', {}).get('Code', '')
