"""ECS task execution role."""
import json
import logging
from typing import Optional
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_iam_client, error_code
from ecs_shipper.settings import Settings

logger = logging.getLogger(__name__)

EXECUTION_ROLE_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"

ECS_TASKS_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
            "Action": "sts:AssumeRole"
        }
    ]
}


class ExecutionRoleManager:
    """Finds or creates the role ECS uses to pull images and write logs."""

    def __init__(self, role_name: str, settings: Optional[Settings] = None):
        self.role_name = role_name
        self.iam_client = get_iam_client(settings)

    def get_role_arn(self) -> Optional[str]:
        """Get ECS task execution role ARN, or None if the role does not exist."""
        try:
            response = self.iam_client.get_role(RoleName=self.role_name)
            return response['Role']['Arn']
        except ClientError as e:
            if error_code(e) == 'NoSuchEntity':
                return None
            raise

    def ensure_role(self) -> str:
        """Return the role ARN, creating the role if it doesn't exist."""
        arn = self.get_role_arn()
        if arn:
            logger.info(f"Using existing execution role: {self.role_name}")
            return arn
        return self._create_role()

    def _create_role(self) -> str:
        """Create ECS task execution role."""
        try:
            response = self.iam_client.create_role(
                RoleName=self.role_name,
                AssumeRolePolicyDocument=json.dumps(ECS_TASKS_TRUST_POLICY),
                Description="ECS task execution role (image pull and log delivery)"
            )

            # Attach required policy
            self.iam_client.attach_role_policy(
                RoleName=self.role_name,
                PolicyArn=EXECUTION_ROLE_POLICY_ARN
            )
        except ClientError as e:
            logger.error(f"Failed to create execution role {self.role_name}: {e}")
            raise

        logger.info(f"Created ECS execution role: {self.role_name}")
        return response['Role']['Arn']
