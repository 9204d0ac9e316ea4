"""
Service rollback management.

Points the service back at an earlier task definition revision. Images are
pushed under a reused tag, so a rollback only helps when the earlier revision
references something that still exists (a different tag or a digest).
"""

import logging
import uuid
from typing import Dict, Any, Optional

from ecs_shipper.aws.ecs_services import ECSServiceManager
from ecs_shipper.aws.task_definitions import TaskDefinitionBuilder, parse_task_definition_arn
from ecs_shipper.errors import DeploymentError
from ecs_shipper.settings import Settings, get_settings
from .state_manager import StateManager

logger = logging.getLogger(__name__)


class RollbackManager:
    """Manages rollback operations for the ECS service."""

    def __init__(self, settings: Optional[Settings] = None,
                 state_manager: Optional[StateManager] = None):
        self.settings = settings or get_settings()
        self.state_manager = state_manager or StateManager(self.settings.state_file)
        self.service_manager = ECSServiceManager(self.settings.cluster_name, self.settings.service_name, self.settings)
        self.task_definitions = TaskDefinitionBuilder(self.settings.task_family, self.settings)

    def create_rollback_plan(self, revision: Optional[int] = None) -> Dict[str, Any]:
        """Work out which revision the service would move to.

        Without an explicit revision the target is the newest ACTIVE revision
        older than the one the service runs now.
        """
        service = self.service_manager.require_service()
        current_arn = service['taskDefinition']
        current = parse_task_definition_arn(current_arn)

        if revision is not None:
            target_arn = f"{self.settings.task_family}:{revision}"
            task_def = self.task_definitions.describe(target_arn)
            if task_def is None or task_def.get('status', 'ACTIVE') != 'ACTIVE':
                raise DeploymentError('rollback', f"revision {target_arn} is not an ACTIVE task definition")
            target_arn = task_def['taskDefinitionArn']
        else:
            older = [arn for arn in self.task_definitions.list_revisions()
                     if parse_task_definition_arn(arn)['revision'] < current['revision']]
            if not older:
                raise DeploymentError(
                    'rollback', f"no ACTIVE revision older than {current['family']}:{current['revision']}"
                )
            target_arn = older[-1]

        if target_arn == current_arn:
            raise DeploymentError('rollback', f"service already runs {target_arn}")

        return {
            'service': self.settings.service_name,
            'cluster': self.settings.cluster_name,
            'from': current_arn,
            'to': target_arn,
        }

    def execute_rollback(self, revision: Optional[int] = None, dry_run: bool = False,
                         wait: bool = False) -> Dict[str, Any]:
        """Roll the service back and record it in the deployment history."""
        plan = self.create_rollback_plan(revision)
        results = {**plan, 'dry_run': dry_run, 'status': 'would_rollback' if dry_run else 'rolled_back'}
        if dry_run:
            return results

        logger.info(f"Rolling back {plan['service']}: {plan['from']} -> {plan['to']}")
        self.service_manager.update_service(task_definition_arn=plan['to'])
        if wait:
            self.service_manager.wait_until_stable()

        self.state_manager.record_deployment({
            "deployment_id": f"rollback-{uuid.uuid4().hex[:12]}",
            "kind": "rollback",
            "task_definition_arn": plan['to'],
            "previous_task_definition_arn": plan['from'],
            "succeeded": True,
            "error": None,
        })
        logger.info(f"✅ Service {plan['service']} now runs {plan['to']}")
        return results
