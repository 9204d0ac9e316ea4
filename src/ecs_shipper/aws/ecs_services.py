"""ECS service management: create, update, force redeploys and tear down."""
import logging
from typing import Dict, Any, List, Optional
from botocore.exceptions import ClientError, WaiterError

from ecs_shipper.aws.clients import get_ecs_client, error_code
from ecs_shipper.settings import Settings
from ecs_shipper.errors import DeploymentError, ResourceNotFoundError
from ecs_shipper.stack import ServiceSpec

logger = logging.getLogger(__name__)


class ECSServiceManager:
    """Manager for one ECS service."""

    def __init__(self, cluster_name: str, service_name: str, settings: Optional[Settings] = None):
        self.cluster_name = cluster_name
        self.service_name = service_name
        self.ecs_client = get_ecs_client(settings)

    def find_service(self) -> Optional[Dict[str, Any]]:
        """Find the ACTIVE service, or None when it is missing, draining or inactive."""
        try:
            response = self.ecs_client.describe_services(
                cluster=self.cluster_name,
                services=[self.service_name]
            )
        except ClientError as e:
            if error_code(e) == 'ClusterNotFoundException':
                return None
            raise
        for service in response.get('services', []):
            if service.get('status') == 'ACTIVE':
                return service
        return None

    def require_service(self) -> Dict[str, Any]:
        service = self.find_service()
        if service is None:
            raise ResourceNotFoundError(
                'ECS service', f"{self.cluster_name}/{self.service_name}",
                hint="run 'ecs-shipper apply' first"
            )
        return service

    def diff(self, spec: ServiceSpec, task_definition_arn: Optional[str],
             current: Optional[Dict[str, Any]] = None) -> List[str]:
        """List the fields where the live service differs from the spec."""
        current = current if current is not None else self.find_service()
        if current is None:
            return ['service does not exist']

        changes = []
        if current.get('desiredCount') != spec.desired_count:
            changes.append(f"desiredCount {current.get('desiredCount')} -> {spec.desired_count}")
        if task_definition_arn and current.get('taskDefinition') != task_definition_arn:
            changes.append(f"taskDefinition {current.get('taskDefinition')} -> {task_definition_arn}")
        return changes

    def create_service(self, spec: ServiceSpec, task_definition_arn: str,
                       network_configuration: Dict[str, Any],
                       tags: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create the service with its fixed desired count and launch type."""
        try:
            service_response = self.ecs_client.create_service(
                cluster=self.cluster_name,
                serviceName=self.service_name,
                taskDefinition=task_definition_arn,
                desiredCount=spec.desired_count,
                launchType=spec.launch_type,
                networkConfiguration=network_configuration,
                propagateTags='SERVICE',
                tags=[{'key': key, 'value': value} for key, value in (tags or {}).items()]
            )
        except ClientError as e:
            logger.error(f"Failed to create ECS service {self.service_name}: {e}")
            raise

        logger.info(f"Created ECS service: {self.service_name}")
        return service_response['service']

    def update_service(self, task_definition_arn: Optional[str] = None,
                       desired_count: Optional[int] = None,
                       force_new_deployment: bool = False) -> Dict[str, Any]:
        """Update the service; only the given fields change."""
        kwargs: Dict[str, Any] = {
            'cluster': self.cluster_name,
            'service': self.service_name,
            'forceNewDeployment': force_new_deployment,
        }
        if task_definition_arn:
            kwargs['taskDefinition'] = task_definition_arn
        if desired_count is not None:
            kwargs['desiredCount'] = desired_count

        try:
            response = self.ecs_client.update_service(**kwargs)
        except ClientError as e:
            if error_code(e) in ('ServiceNotFoundException', 'ServiceNotActiveException',
                                 'ClusterNotFoundException'):
                raise ResourceNotFoundError(
                    'ECS service', f"{self.cluster_name}/{self.service_name}",
                    hint="run 'ecs-shipper apply' first"
                ) from e
            logger.error(f"Failed to update ECS service {self.service_name}: {e}")
            raise

        logger.info(f"Updated ECS service: {self.service_name}")
        return response['service']

    def force_new_deployment(self) -> Dict[str, Any]:
        """Restart every task of the service on the current task definition.

        This is how a freshly pushed image under an unchanged tag goes live.
        """
        service = self.update_service(force_new_deployment=True)
        logger.info(f"Forced new deployment of {self.cluster_name}/{self.service_name}")
        return service

    def wait_until_stable(self, timeout_seconds: int = 600, poll_seconds: int = 15) -> None:
        """Block until the service reaches a steady state."""
        waiter = self.ecs_client.get_waiter('services_stable')
        logger.info(f"Waiting for {self.service_name} to become stable (timeout {timeout_seconds}s)")
        try:
            waiter.wait(
                cluster=self.cluster_name,
                services=[self.service_name],
                WaiterConfig={
                    'Delay': poll_seconds,
                    'MaxAttempts': max(1, timeout_seconds // poll_seconds)
                }
            )
        except WaiterError as e:
            raise DeploymentError('wait-stable', f"service did not stabilize: {e}") from e
        logger.info(f"✅ Service {self.service_name} is stable")

    def delete_service(self) -> bool:
        """Scale the service to zero and delete it. Returns False when it was already gone."""
        if self.find_service() is None:
            logger.info(f"ECS service {self.service_name} not found")
            return False

        try:
            self.ecs_client.update_service(
                cluster=self.cluster_name,
                service=self.service_name,
                desiredCount=0
            )
            self.ecs_client.delete_service(
                cluster=self.cluster_name,
                service=self.service_name,
                force=True
            )
        except ClientError as e:
            if error_code(e) == 'ServiceNotFoundException':
                return False
            logger.error(f"Failed to delete ECS service {self.service_name}: {e}")
            raise

        logger.info(f"Deleted ECS service: {self.service_name}")
        return True
