import json
import re
from unittest.mock import patch

import pytest

from ecs_shipper.errors import ConfigurationError
from ecs_shipper.infrastructure.terraform import RawExpression, hcl_value, render_terraform, write_terraform
from ecs_shipper.stack import StackSpec
from tests.consts import TEST_CLUSTER_NAME, TEST_REPO_NAME, TEST_SERVICE_NAME


def test_hcl_values():
    assert hcl_value(True) == "true"
    assert hcl_value(3) == "3"
    assert hcl_value("a\"b") == '"a\\"b"'
    assert hcl_value("${x}") == '"$${x}"'
    assert hcl_value(RawExpression("aws_ecs_cluster.app.id")) == "aws_ecs_cluster.app.id"
    assert hcl_value(["a", 1]) == '["a", 1]'


def test_render_declares_every_resource(make_settings):
    rendered = render_terraform(StackSpec.from_settings(make_settings()))

    for resource in ('resource "aws_ecr_repository" "app"',
                     'resource "aws_ecs_cluster" "app"',
                     'resource "aws_cloudwatch_log_group" "app"',
                     'resource "aws_iam_role" "execution"',
                     'resource "aws_ecs_task_definition" "app"',
                     'resource "aws_ecs_service" "app"'):
        assert resource in rendered

    assert f'name = "{TEST_REPO_NAME}"' in rendered
    assert f'name = "{TEST_CLUSTER_NAME}"' in rendered
    assert f'name = "{TEST_SERVICE_NAME}"' in rendered
    assert 'cpu = "256"' in rendered
    assert 'launch_type = "FARGATE"' in rendered
    assert rendered.count("{") == rendered.count("}")


def test_render_uses_default_network_without_ids(make_settings):
    rendered = render_terraform(StackSpec.from_settings(make_settings()))

    assert 'data "aws_vpc" "default"' in rendered
    assert "subnets = data.aws_subnets.default.ids" in rendered
    assert 'resource "aws_security_group" "app"' in rendered


def test_render_uses_explicit_network(make_settings):
    rendered = render_terraform(StackSpec.from_settings(
        make_settings(subnet_ids="subnet-1,subnet-2", security_group_ids="sg-1")
    ))

    assert 'data "aws_vpc"' not in rendered
    assert 'resource "aws_security_group"' not in rendered
    assert 'subnets = ["subnet-1", "subnet-2"]' in rendered
    assert 'security_groups = ["sg-1"]' in rendered


def test_container_definitions_reference_repository(make_settings):
    rendered = render_terraform(StackSpec.from_settings(make_settings(container_port=3000, app_port=3000)))

    body = re.search(r"container_definitions = jsonencode\((\[.*?\n  \])\)", rendered, re.DOTALL).group(1)
    (container,) = json.loads(body)
    assert container["image"] == "${aws_ecr_repository.app.repository_url}:latest"
    assert container["portMappings"][0]["containerPort"] == 3000


def test_write_terraform(make_settings, tmp_path):
    path = write_terraform(StackSpec.from_settings(make_settings()), str(tmp_path / "tf"))
    assert path.name == "main.tf"
    assert 'provider "aws"' in path.read_text()


def test_render_needs_no_account_lookup(make_settings):
    settings = make_settings(AWS_ACCOUNT_ID=None, image_tag="v7")

    with patch("ecs_shipper.aws.clients.get_sts_client", side_effect=RuntimeError("no credentials")):
        stack = StackSpec.from_settings(settings, resolve_image=False)
        rendered = render_terraform(stack)

    assert stack.task_definition.container.image is None
    assert '"image": "${aws_ecr_repository.app.repository_url}:v7"' in rendered
    with patch("ecs_shipper.aws.clients.get_sts_client", side_effect=RuntimeError("no credentials")):
        with pytest.raises(ConfigurationError):
            StackSpec.from_settings(settings)
