"""
Stack provisioning.

Creates the declared resources directly with boto3, one at a time in a fixed
order (execution role, repository, cluster, log group, network, task
definition, service). Every step is idempotent: existing resources are reused
and only updated when they differ from the stack.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional

from ecs_shipper.aws.ecr import ECRRepositoryManager
from ecs_shipper.aws.ecs_cluster import ECSClusterManager
from ecs_shipper.aws.ecs_services import ECSServiceManager
from ecs_shipper.aws.iam import ExecutionRoleManager
from ecs_shipper.aws.network import NetworkResolver
from ecs_shipper.aws.task_definitions import TaskDefinitionBuilder
from ecs_shipper.settings import Settings, get_settings
from ecs_shipper.stack import StackSpec
from ecs_shipper.state.state_manager import StateManager
from ecs_shipper.utils.decorators import log_operation

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
NO_OP = "no-op"


@dataclass
class PlannedChange:
    action: str
    resource_type: str
    name: str
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        symbol = {CREATE: "+", UPDATE: "~", NO_OP: "="}.get(self.action, "?")
        line = f"{symbol} {self.resource_type} {self.name}"
        if self.details and self.action != NO_OP:
            line += f" ({'; '.join(self.details)})"
        return line


class StackProvisioner:
    """Plans, applies and destroys one stack."""

    def __init__(self, settings: Optional[Settings] = None,
                 stack: Optional[StackSpec] = None,
                 state_manager: Optional[StateManager] = None):
        self.settings = settings or get_settings()
        self.stack = stack or StackSpec.from_settings(self.settings)
        self.state_manager = state_manager or StateManager(self.settings.state_file)

        self.role_manager = ExecutionRoleManager(self.stack.execution_role_name, self.settings)
        self.repository_manager = ECRRepositoryManager(self.stack.repository.name, self.settings)
        self.cluster_manager = ECSClusterManager(self.stack.cluster.name, self.settings)
        self.task_definition_builder = TaskDefinitionBuilder(self.stack.task_definition.family, self.settings)
        self.service_manager = ECSServiceManager(self.stack.cluster.name, self.stack.service.name, self.settings)
        self.network_resolver = NetworkResolver(self.stack.app_name, self.stack.container_port, self.settings)

    def plan(self) -> List[PlannedChange]:
        """Compare the live account with the stack without changing anything."""
        stack = self.stack
        changes = []

        role_arn = self.role_manager.get_role_arn()
        changes.append(PlannedChange(NO_OP if role_arn else CREATE, "iam_role", stack.execution_role_name))

        repository = self.repository_manager.describe_repository()
        changes.append(PlannedChange(NO_OP if repository else CREATE, "ecr_repository", stack.repository.name))

        cluster = self.cluster_manager.find_cluster()
        changes.append(PlannedChange(NO_OP if cluster else CREATE, "ecs_cluster", stack.cluster.name))

        log_group_exists = self.task_definition_builder.log_group_exists(stack.log_group)
        changes.append(PlannedChange(NO_OP if log_group_exists else CREATE, "log_group", stack.log_group))

        network = self.network_resolver.resolve(
            stack.service.subnets, stack.service.security_groups, create=False
        )
        if network['security_groups']:
            changes.append(PlannedChange(NO_OP, "security_group", ",".join(network['security_groups'])))
        else:
            changes.append(PlannedChange(CREATE, "security_group", self.network_resolver.security_group_name,
                                         [f"tcp/{stack.container_port} from 0.0.0.0/0"]))

        current_td = self.task_definition_builder.latest_active()
        if current_td is None:
            changes.append(PlannedChange(CREATE, "task_definition", stack.task_definition.family))
            td_changed = True
        else:
            td_diff = self.task_definition_builder.diff(stack.task_definition, role_arn, current_td)
            td_changed = bool(td_diff)
            changes.append(PlannedChange(UPDATE if td_changed else NO_OP, "task_definition",
                                         stack.task_definition.family, td_diff))

        service = self.service_manager.find_service() if cluster else None
        if service is None:
            changes.append(PlannedChange(CREATE, "ecs_service", stack.service.name))
        else:
            current_arn = current_td['taskDefinitionArn'] if current_td else None
            service_diff = self.service_manager.diff(stack.service, current_arn, service)
            if td_changed:
                service_diff.append("taskDefinition -> new revision")
            changes.append(PlannedChange(UPDATE if service_diff else NO_OP, "ecs_service",
                                         stack.service.name, service_diff))

        return changes

    @log_operation("Stack apply")
    def apply(self) -> Dict[str, Any]:
        """Create or update every resource of the stack."""
        stack = self.stack
        tags = stack.tags()
        state = self.state_manager
        state.start_deployment(f"apply-{stack.service.name}")

        try:
            role_arn = self.role_manager.ensure_role()
            state.record_resource("iam_role", stack.execution_role_name, {"arn": role_arn})

            repository = self.repository_manager.ensure_repository(stack.repository, tags)
            state.record_resource("ecr_repository", stack.repository.name,
                                  {"uri": repository['repositoryUri']})

            cluster = self.cluster_manager.ensure_cluster(stack.cluster, tags)
            state.record_resource("ecs_cluster", stack.cluster.name, {"arn": cluster['clusterArn']})

            self.task_definition_builder.ensure_log_group(stack.log_group, stack.log_retention_days, tags)
            state.record_resource("log_group", stack.log_group, {})

            network = self.network_resolver.resolve(stack.service.subnets, stack.service.security_groups)
            state.set_configuration("region", stack.region)
            state.set_configuration("network", network)

            current_td = self.task_definition_builder.latest_active()
            td_diff = self.task_definition_builder.diff(stack.task_definition, role_arn, current_td)
            if td_diff:
                logger.info(f"Task definition changes: {td_diff}")
                task_definition_arn = self.task_definition_builder.register(stack.task_definition, role_arn)
            else:
                task_definition_arn = current_td['taskDefinitionArn']
                logger.info(f"Task definition unchanged: {task_definition_arn}")
            state.record_resource("task_definition", stack.task_definition.family,
                                  {"arn": task_definition_arn})

            service = self.service_manager.find_service()
            if service is None:
                service = self.service_manager.create_service(
                    stack.service,
                    task_definition_arn,
                    stack.service.network_configuration(network['subnets'], network['security_groups']),
                    tags
                )
            else:
                service_diff = self.service_manager.diff(stack.service, task_definition_arn, service)
                if service_diff:
                    logger.info(f"Service changes: {service_diff}")
                    service = self.service_manager.update_service(
                        task_definition_arn=task_definition_arn,
                        desired_count=stack.service.desired_count
                    )
                else:
                    logger.info(f"Service unchanged: {stack.service.name}")
            state.record_resource("ecs_service", stack.service.name,
                                  {"arn": service['serviceArn'], "cluster": stack.cluster.name})
        except Exception as e:
            state.mark_deployment_failed(str(e))
            raise

        state.mark_deployment_complete()
        return {
            "status": "success",
            "region": stack.region,
            "execution_role_arn": role_arn,
            "repository_uri": repository['repositoryUri'],
            "cluster_arn": cluster['clusterArn'],
            "log_group": stack.log_group,
            "task_definition_arn": task_definition_arn,
            "service_arn": service['serviceArn'],
            "vpc_id": network['vpc_id'],
            "subnets": network['subnets'],
            "security_groups": network['security_groups'],
        }

    @log_operation("Stack destroy")
    def destroy(self, keep_repository: bool = False) -> Dict[str, Any]:
        """Tear the stack down in reverse order. Missing resources are skipped.

        The execution role is shared across stacks and is never deleted.
        """
        stack = self.stack
        result = {
            "service_deleted": self.service_manager.delete_service(),
            "task_definitions_deregistered": self.task_definition_builder.deregister_all(),
            "cluster_deleted": self.cluster_manager.delete_cluster(),
            "log_group_deleted": self.task_definition_builder.delete_log_group(stack.log_group),
            "repository_deleted": False,
        }
        if not keep_repository:
            result["repository_deleted"] = self.repository_manager.delete_repository(force=True)

        state = self.state_manager
        state.forget_resource("ecs_service", stack.service.name)
        state.forget_resource("task_definition", stack.task_definition.family)
        state.forget_resource("ecs_cluster", stack.cluster.name)
        state.forget_resource("log_group", stack.log_group)
        if not keep_repository:
            state.forget_resource("ecr_repository", stack.repository.name)
        state.mark_destroyed()
        return result
