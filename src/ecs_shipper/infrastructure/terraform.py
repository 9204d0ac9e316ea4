"""
Terraform rendering.

Renders the stack as a single main.tf: provider, image repository, cluster,
log group, execution role, task definition and service. The output is meant
to be committed and applied with the terraform CLI; ecs-shipper never runs
terraform itself.
"""
import json
import logging
from pathlib import Path
from typing import Any, List

from ecs_shipper.aws.iam import ECS_TASKS_TRUST_POLICY, EXECUTION_ROLE_POLICY_ARN
from ecs_shipper.stack import StackSpec

logger = logging.getLogger(__name__)

INDENT = "  "


class RawExpression(str):
    """An HCL expression emitted without quoting (references, function calls)."""


def hcl_value(value: Any, level: int = 0) -> str:
    """Format a Python value as an HCL literal."""
    if isinstance(value, RawExpression):
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    if isinstance(value, str):
        escaped = (value.replace("\\", "\\\\")
                   .replace('"', '\\"')
                   .replace("\n", "\\n")
                   .replace("${", "$${")
                   .replace("%{", "%%{"))
        return f'"{escaped}"'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(hcl_value(item, level) for item in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        pad = INDENT * (level + 1)
        lines = [f"{pad}{hcl_key(key)} = {hcl_value(item, level + 1)}" for key, item in value.items()]
        return "{\n" + "\n".join(lines) + "\n" + INDENT * level + "}"
    raise TypeError(f"Cannot render {type(value).__name__} as HCL")


def hcl_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum() and not key[0].isdigit():
        return key
    return hcl_value(key)


def render_block(header: str, body: List[Any], level: int = 0) -> str:
    """Render a block. Body items are (name, value) attributes or nested blocks (str)."""
    pad = INDENT * level
    lines = [f"{pad}{header} {{"]
    for item in body:
        if isinstance(item, tuple):
            name, value = item
            lines.append(f"{pad}{INDENT}{name} = {hcl_value(value, level + 1)}")
        else:
            lines.append(item)
    lines.append(f"{pad}}}")
    return "\n".join(lines)


def _container_definitions(stack: StackSpec) -> RawExpression:
    container = stack.task_definition.container_definition()
    container['logConfiguration']['options']['awslogs-group'] = "${aws_cloudwatch_log_group.app.name}"
    container['image'] = "${aws_ecr_repository.app.repository_url}:" + stack.task_definition.container.tag
    rendered = json.dumps([container], indent=2)
    # jsonencode() accepts HCL object syntax; JSON keys stay quoted
    body = rendered.replace("\n", "\n" + INDENT)
    return RawExpression(f"jsonencode({body})")


def _network_blocks(stack: StackSpec) -> List[str]:
    """Data sources and the security group a service needs when IDs are not given."""
    service = stack.service
    blocks = []
    if service.subnets:
        vpc_id = RawExpression("data.aws_subnet.first.vpc_id")
        if not service.security_groups:
            blocks.append(render_block('data "aws_subnet" "first"', [("id", service.subnets[0])]))
    else:
        vpc_id = RawExpression("data.aws_vpc.default.id")
        blocks.append(render_block('data "aws_vpc" "default"', [("default", True)]))
        blocks.append(render_block('data "aws_subnets" "default"', [
            render_block("filter", [
                ("name", "vpc-id"),
                ("values", [RawExpression("data.aws_vpc.default.id")]),
            ], level=1),
        ]))

    if not service.security_groups:
        blocks.append(render_block('resource "aws_security_group" "app"', [
            ("name", f"{stack.app_name}-sg"),
            ("vpc_id", vpc_id),
            render_block("ingress", [
                ("from_port", stack.container_port),
                ("to_port", stack.container_port),
                ("protocol", "tcp"),
                ("cidr_blocks", ["0.0.0.0/0"]),
            ], level=1),
            render_block("egress", [
                ("from_port", 0),
                ("to_port", 0),
                ("protocol", "-1"),
                ("cidr_blocks", ["0.0.0.0/0"]),
            ], level=1),
        ]))
    return blocks


def render_terraform(stack: StackSpec) -> str:
    """Render the complete main.tf for a stack."""
    tags = stack.tags()
    task_definition = stack.task_definition
    service = stack.service

    blocks = [
        render_block("terraform", [
            render_block("required_providers", [
                ("aws", {"source": "hashicorp/aws", "version": ">= 5.0"}),
            ], level=1),
        ]),
        render_block('provider "aws"', [("region", stack.region)]),
        render_block('resource "aws_ecr_repository" "app"', [
            ("name", stack.repository.name),
            ("image_tag_mutability", stack.repository.image_tag_mutability),
            ("force_delete", True),
            render_block("image_scanning_configuration", [
                ("scan_on_push", stack.repository.scan_on_push),
            ], level=1),
            ("tags", tags),
        ]),
        render_block('resource "aws_ecs_cluster" "app"', [
            ("name", stack.cluster.name),
            render_block("setting", [
                ("name", "containerInsights"),
                ("value", "enabled" if stack.cluster.container_insights else "disabled"),
            ], level=1),
            ("tags", tags),
        ]),
        render_block('resource "aws_cloudwatch_log_group" "app"', [
            ("name", stack.log_group),
            ("retention_in_days", stack.log_retention_days),
            ("tags", tags),
        ]),
        render_block('resource "aws_iam_role" "execution"', [
            ("name", stack.execution_role_name),
            ("assume_role_policy", RawExpression(
                "jsonencode(" + json.dumps(ECS_TASKS_TRUST_POLICY) + ")"
            )),
        ]),
        render_block('resource "aws_iam_role_policy_attachment" "execution"', [
            ("role", RawExpression("aws_iam_role.execution.name")),
            ("policy_arn", EXECUTION_ROLE_POLICY_ARN),
        ]),
        render_block('resource "aws_ecs_task_definition" "app"', [
            ("family", task_definition.family),
            ("requires_compatibilities", task_definition.requires_compatibilities),
            ("network_mode", task_definition.network_mode),
            ("cpu", task_definition.cpu),
            ("memory", task_definition.memory),
            ("execution_role_arn", RawExpression("aws_iam_role.execution.arn")),
            ("container_definitions", _container_definitions(stack)),
            ("tags", tags),
        ]),
    ]
    blocks.extend(_network_blocks(stack))
    blocks.append(render_block('resource "aws_ecs_service" "app"', [
        ("name", service.name),
        ("cluster", RawExpression("aws_ecs_cluster.app.id")),
        ("task_definition", RawExpression("aws_ecs_task_definition.app.arn")),
        ("desired_count", service.desired_count),
        ("launch_type", service.launch_type),
        render_block("network_configuration", _network_body(stack), level=1),
        ("tags", tags),
    ]))

    return "\n\n".join(blocks) + "\n"


def _network_body(stack: StackSpec) -> List[Any]:
    service = stack.service
    subnets = service.subnets or RawExpression("data.aws_subnets.default.ids")
    security_groups = service.security_groups or [RawExpression("aws_security_group.app.id")]
    return [
        ("subnets", subnets),
        ("security_groups", security_groups),
        ("assign_public_ip", service.assign_public_ip),
    ]


def write_terraform(stack: StackSpec, directory: str = "terraform") -> Path:
    """Write main.tf into a directory and return its path."""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / "main.tf"
    path.write_text(render_terraform(stack), encoding="utf-8")
    logger.info(f"Wrote Terraform configuration: {path}")
    return path
