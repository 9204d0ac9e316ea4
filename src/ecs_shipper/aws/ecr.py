"""ECR repository management: the image registry deployments push to."""
import base64
import logging
from typing import Dict, Any, Optional, Tuple
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_ecr_client, error_code
from ecs_shipper.settings import Settings
from ecs_shipper.stack import RepositorySpec

logger = logging.getLogger(__name__)


class ECRRepositoryManager:
    """Manager for one ECR repository and the images in it."""

    def __init__(self, repository_name: str, settings: Optional[Settings] = None):
        self.repository_name = repository_name
        self.ecr_client = get_ecr_client(settings)

    def describe_repository(self) -> Optional[Dict[str, Any]]:
        """Return the repository description, or None when it does not exist."""
        try:
            response = self.ecr_client.describe_repositories(repositoryNames=[self.repository_name])
            return response['repositories'][0]
        except ClientError as e:
            if error_code(e) == 'RepositoryNotFoundException':
                return None
            logger.error(f"Could not check ECR repository '{self.repository_name}': {e}")
            raise

    def repository_exists(self) -> bool:
        """Check if ECR repository exists."""
        exists = self.describe_repository() is not None
        if exists:
            logger.debug(f"ECR repository '{self.repository_name}' exists")
        else:
            logger.info(f"ECR repository '{self.repository_name}' does not exist")
        return exists

    def ensure_repository(self, spec: RepositorySpec, tags: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create ECR repository if it doesn't exist. Returns the repository description."""
        existing = self.describe_repository()
        if existing:
            logger.info(f"Using existing ECR repository: {self.repository_name}")
            return existing

        try:
            response = self.ecr_client.create_repository(
                repositoryName=spec.name,
                imageTagMutability=spec.image_tag_mutability,
                imageScanningConfiguration={'scanOnPush': spec.scan_on_push},
                tags=[{'Key': key, 'Value': value} for key, value in (tags or {}).items()]
            )
            logger.info(f"Created ECR repository: {spec.name}")
            return response['repository']
        except ClientError as e:
            if error_code(e) == 'RepositoryAlreadyExistsException':
                logger.info(f"ECR repository {spec.name} already exists")
                return self.describe_repository()
            logger.error(f"Failed to create ECR repository: {e}")
            raise

    def get_image(self, tag: str) -> Optional[Dict[str, Any]]:
        """Return image details for a tag, or None when no image carries it."""
        try:
            response = self.ecr_client.describe_images(
                repositoryName=self.repository_name,
                imageIds=[{'imageTag': tag}]
            )
        except ClientError as e:
            if error_code(e) in ('ImageNotFoundException', 'RepositoryNotFoundException'):
                return None
            raise

        images = response.get('imageDetails', [])
        if not images:
            return None
        image = images[0]
        image_size_mb = image.get('imageSizeInBytes', 0) / (1024 * 1024)
        logger.debug(f"Found image {self.repository_name}:{tag}: {image_size_mb:.1f} MB, "
                     f"pushed {image.get('imagePushedAt', 'unknown time')}")
        return image

    def image_exists(self, tag: str) -> bool:
        """Check if ECR image already exists."""
        return self.get_image(tag) is not None

    def delete_image(self, tag: str) -> bool:
        """Delete the image holding a tag. Returns False when there was nothing to delete."""
        response = self.ecr_client.batch_delete_image(
            repositoryName=self.repository_name,
            imageIds=[{'imageTag': tag}]
        )
        deleted = response.get('imageIds', [])
        for failure in response.get('failures', []):
            if failure.get('failureCode') == 'ImageNotFound':
                logger.info(f"No image tagged '{tag}' in {self.repository_name}")
            else:
                logger.warning(f"Could not delete {self.repository_name}:{tag}: "
                               f"{failure.get('failureCode')} {failure.get('failureReason', '')}")
        if deleted:
            logger.info(f"Deleted image {self.repository_name}:{tag}")
        return bool(deleted)

    def get_login(self) -> Tuple[str, str, str]:
        """Get docker credentials for the registry.

        Returns:
            (username, password, registry endpoint)
        """
        token_response = self.ecr_client.get_authorization_token()
        token_data = token_response['authorizationData'][0]

        # Decode ECR token
        token = base64.b64decode(token_data['authorizationToken']).decode('utf-8')
        username, password = token.split(':', 1)
        return username, password, token_data['proxyEndpoint']

    def delete_repository(self, force: bool = True) -> bool:
        """Delete the repository (and its images when forced). Returns False if it was missing."""
        try:
            self.ecr_client.delete_repository(repositoryName=self.repository_name, force=force)
            logger.info(f"Deleted ECR repository: {self.repository_name}")
            return True
        except ClientError as e:
            if error_code(e) == 'RepositoryNotFoundException':
                logger.info(f"ECR repository {self.repository_name} already gone")
                return False
            logger.error(f"Failed to delete ECR repository: {e}")
            raise
