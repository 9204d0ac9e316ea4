"""
Stack model

Purpose: the static configuration records that describe one ECS deployment:
an image repository, a cluster, a task definition (fixed CPU/memory, one
container, one port mapping) and a service (fixed desired count, launch type).

Main class: StackSpec, built from Settings with StackSpec.from_settings().
TaskDefinitionConfig.to_dict() produces the RegisterTaskDefinition payload
that both the provisioner and the Terraform renderer start from.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from ecs_shipper.settings import Settings

# Valid Fargate task sizes: CPU units -> allowed memory (MiB)
FARGATE_CPU_MEMORY: Dict[int, List[int]] = {
    256: [512, 1024, 2048],
    512: list(range(1024, 4096 + 1, 1024)),
    1024: list(range(2048, 8192 + 1, 1024)),
    2048: list(range(4096, 16384 + 1, 1024)),
    4096: list(range(8192, 30720 + 1, 1024)),
    8192: list(range(16384, 61440 + 1, 4096)),
    16384: list(range(32768, 122880 + 1, 8192)),
}


def is_valid_fargate_size(cpu: str, memory: str) -> bool:
    """Check a CPU/memory pair against the Fargate size table."""
    try:
        cpu_units, memory_mib = int(cpu), int(memory)
    except (TypeError, ValueError):
        return False
    return memory_mib in FARGATE_CPU_MEMORY.get(cpu_units, [])


@dataclass
class RepositorySpec:
    name: str
    scan_on_push: bool = True
    image_tag_mutability: str = "MUTABLE"


@dataclass
class ClusterSpec:
    name: str
    container_insights: bool = False


@dataclass
class ContainerSpec:
    name: str
    tag: str
    port: int
    # Full registry URI; None when the account is not resolved (offline rendering)
    image: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)

    def port_mappings(self) -> List[Dict[str, Any]]:
        return [{
            'containerPort': self.port,
            'hostPort': self.port,
            'protocol': 'tcp'
        }]


@dataclass
class TaskDefinitionConfig:
    """Configuration for the single-container ECS task definition."""
    family: str
    cpu: str
    memory: str
    container: ContainerSpec
    log_group: str
    region: str
    network_mode: str = 'awsvpc'
    requires_compatibilities: List[str] = field(default_factory=lambda: ['FARGATE'])
    tags: List[Dict[str, str]] = field(default_factory=list)

    def container_definition(self) -> Dict[str, Any]:
        container_def = {
            'name': self.container.name,
            'image': self.container.image,
            'essential': True,
            'portMappings': self.container.port_mappings(),
            'logConfiguration': {
                'logDriver': 'awslogs',
                'options': {
                    'awslogs-group': self.log_group,
                    'awslogs-region': self.region,
                    'awslogs-stream-prefix': 'ecs'
                }
            }
        }
        if self.container.environment:
            container_def['environment'] = [
                {'name': key, 'value': value}
                for key, value in sorted(self.container.environment.items())
            ]
        return container_def

    def to_dict(self, execution_role_arn: Optional[str] = None) -> Dict[str, Any]:
        """Convert to ECS task definition dictionary."""
        task_def = {
            'family': self.family,
            'networkMode': self.network_mode,
            'requiresCompatibilities': self.requires_compatibilities,
            'cpu': self.cpu,
            'memory': self.memory,
            'containerDefinitions': [self.container_definition()]
        }

        if execution_role_arn:
            task_def['executionRoleArn'] = execution_role_arn
        if self.tags:
            task_def['tags'] = self.tags

        return task_def


@dataclass
class ServiceSpec:
    name: str
    cluster: str
    desired_count: int = 1
    launch_type: str = 'FARGATE'
    subnets: List[str] = field(default_factory=list)
    security_groups: List[str] = field(default_factory=list)
    assign_public_ip: bool = True

    def network_configuration(self, subnets: List[str], security_groups: List[str]) -> Dict[str, Any]:
        return {
            'awsvpcConfiguration': {
                'subnets': subnets,
                'securityGroups': security_groups,
                'assignPublicIp': 'ENABLED' if self.assign_public_ip else 'DISABLED'
            }
        }


@dataclass
class StackSpec:
    """Everything one deployment declares."""
    region: str
    app_name: str
    repository: RepositorySpec
    cluster: ClusterSpec
    task_definition: TaskDefinitionConfig
    service: ServiceSpec
    execution_role_name: str
    log_retention_days: int = 30

    @property
    def log_group(self) -> str:
        return self.task_definition.log_group

    @property
    def container_port(self) -> int:
        return self.task_definition.container.port

    def tags(self) -> Dict[str, str]:
        return {'Project': self.app_name, 'ManagedBy': 'ecs-shipper'}

    @classmethod
    def from_settings(cls, settings: Settings, resolve_image: bool = True) -> "StackSpec":
        """Build the stack from settings.

        resolve_image=False leaves ContainerSpec.image unset, so no AWS
        account lookup happens. The Terraform renderer only needs the tag.
        """
        log_group = settings.resolved_log_group
        task_definition = TaskDefinitionConfig(
            family=settings.task_family,
            cpu=settings.task_cpu,
            memory=settings.task_memory,
            container=ContainerSpec(
                name=settings.container_name,
                tag=settings.image_tag,
                port=settings.container_port,
                image=settings.image_uri if resolve_image else None,
            ),
            log_group=log_group,
            region=settings.aws_region,
            requires_compatibilities=[settings.launch_type],
            tags=[
                {'key': 'Name', 'value': settings.task_family},
                {'key': 'Project', 'value': settings.app_name},
            ],
        )
        return cls(
            region=settings.aws_region,
            app_name=settings.app_name,
            repository=RepositorySpec(name=settings.ecr_repo_name),
            cluster=ClusterSpec(name=settings.cluster_name),
            task_definition=task_definition,
            service=ServiceSpec(
                name=settings.service_name,
                cluster=settings.cluster_name,
                desired_count=settings.desired_count,
                launch_type=settings.launch_type,
                subnets=settings.subnet_id_list,
                security_groups=settings.security_group_id_list,
                assign_public_ip=settings.assign_public_ip,
            ),
            execution_role_name=settings.execution_role_name,
            log_retention_days=settings.log_retention_days,
        )
