"""
ECS Task Definition Builder

Registers the single-container task definition of a stack, compares it with
the latest ACTIVE revision, and manages the CloudWatch log group its
container writes to.
"""
import logging
from typing import Dict, Any, List, Optional
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_ecs_client, get_logs_client, error_code
from ecs_shipper.settings import Settings
from ecs_shipper.stack import TaskDefinitionConfig

logger = logging.getLogger(__name__)


def parse_task_definition_arn(arn: str) -> Dict[str, Any]:
    """Split '...:task-definition/family:7' into family and revision."""
    family_revision = arn.rsplit('/', 1)[-1]
    family, _, revision = family_revision.rpartition(':')
    return {'family': family, 'revision': int(revision)}


class TaskDefinitionBuilder:
    """Builder for the stack's ECS task definition and its log group."""

    def __init__(self, family: str, settings: Optional[Settings] = None):
        self.family = family
        self.ecs_client = get_ecs_client(settings)
        self.logs_client = get_logs_client(settings)

    def list_revisions(self, status: str = 'ACTIVE') -> List[str]:
        """List task definition ARNs of this family, oldest first."""
        paginator = self.ecs_client.get_paginator('list_task_definitions')
        arns = []
        for page in paginator.paginate(familyPrefix=self.family, status=status, sort='ASC'):
            for arn in page.get('taskDefinitionArns', []):
                # familyPrefix also matches longer family names
                if parse_task_definition_arn(arn)['family'] == self.family:
                    arns.append(arn)
        arns.sort(key=lambda arn: parse_task_definition_arn(arn)['revision'])
        return arns

    def describe(self, task_definition: str) -> Optional[Dict[str, Any]]:
        """Describe a task definition by ARN or family:revision, or None if unknown."""
        try:
            response = self.ecs_client.describe_task_definition(taskDefinition=task_definition)
        except ClientError as e:
            if error_code(e) in ('ClientException', 'InvalidParameterException'):
                return None
            raise
        return response['taskDefinition']

    def latest_active(self) -> Optional[Dict[str, Any]]:
        """The newest ACTIVE revision of the family, or None."""
        revisions = self.list_revisions()
        if not revisions:
            return None
        task_def = self.describe(revisions[-1])
        if task_def and task_def.get('status', 'ACTIVE') == 'ACTIVE':
            return task_def
        return None

    def diff(self, config: TaskDefinitionConfig, execution_role_arn: Optional[str],
             current: Optional[Dict[str, Any]] = None) -> List[str]:
        """List the fields where the live revision differs from the config.

        An empty list means the latest ACTIVE revision already matches.
        """
        current = current if current is not None else self.latest_active()
        if current is None:
            return ['task definition does not exist']

        changes = []
        if str(current.get('cpu')) != str(config.cpu):
            changes.append(f"cpu {current.get('cpu')} -> {config.cpu}")
        if str(current.get('memory')) != str(config.memory):
            changes.append(f"memory {current.get('memory')} -> {config.memory}")
        if execution_role_arn and current.get('executionRoleArn') != execution_role_arn:
            changes.append(f"executionRoleArn {current.get('executionRoleArn')} -> {execution_role_arn}")

        containers = current.get('containerDefinitions', [])
        container = next((c for c in containers if c.get('name') == config.container.name), None)
        if container is None:
            changes.append(f"container {config.container.name} missing")
            return changes
        if container.get('image') != config.container.image:
            changes.append(f"image {container.get('image')} -> {config.container.image}")
        ports = [m.get('containerPort') for m in container.get('portMappings', [])]
        if ports != [config.container.port]:
            changes.append(f"containerPort {ports} -> {config.container.port}")
        return changes

    def register(self, config: TaskDefinitionConfig, execution_role_arn: Optional[str]) -> str:
        """Register task definition with ECS. Returns task definition ARN."""
        task_def_dict = config.to_dict(execution_role_arn)
        try:
            response = self.ecs_client.register_task_definition(**task_def_dict)
        except ClientError as e:
            logger.error(f"Failed to register task definition {task_def_dict['family']}: {e}")
            raise

        task_def_arn = response['taskDefinition']['taskDefinitionArn']
        logger.info(f"Registered task definition: {task_def_arn}")
        return task_def_arn

    def deregister_all(self) -> int:
        """Deregister every ACTIVE revision of the family. Returns how many were deregistered."""
        count = 0
        for arn in self.list_revisions():
            self.ecs_client.deregister_task_definition(taskDefinition=arn)
            logger.info(f"Deregistered task definition: {arn}")
            count += 1
        return count

    def container_port(self, task_definition: str, container_name: Optional[str] = None) -> Optional[int]:
        """Return the first container port declared by a task definition."""
        task_def = self.describe(task_definition)
        if not task_def:
            return None
        for container in task_def.get('containerDefinitions', []):
            if container_name and container.get('name') != container_name:
                continue
            for mapping in container.get('portMappings', []):
                return mapping.get('containerPort')
        return None

    # Log group

    def log_group_exists(self, log_group_name: str) -> bool:
        response = self.logs_client.describe_log_groups(logGroupNamePrefix=log_group_name)
        return any(group['logGroupName'] == log_group_name
                   for group in response.get('logGroups', []))

    def ensure_log_group(self, log_group_name: str, retention_days: int = 30,
                         tags: Optional[Dict[str, str]] = None) -> str:
        """Create CloudWatch log group for ECS tasks."""
        if self.log_group_exists(log_group_name):
            logger.info(f"Using existing log group: {log_group_name}")
            return log_group_name

        try:
            self.logs_client.create_log_group(logGroupName=log_group_name, tags=tags or {})
            self.logs_client.put_retention_policy(
                logGroupName=log_group_name,
                retentionInDays=retention_days
            )
        except ClientError as e:
            if error_code(e) == 'ResourceAlreadyExistsException':
                return log_group_name
            logger.error(f"Failed to create log group: {e}")
            raise

        logger.info(f"Created log group: {log_group_name}")
        return log_group_name

    def delete_log_group(self, log_group_name: str) -> bool:
        try:
            self.logs_client.delete_log_group(logGroupName=log_group_name)
        except ClientError as e:
            if error_code(e) == 'ResourceNotFoundException':
                return False
            raise
        logger.info(f"Deleted log group: {log_group_name}")
        return True
