import boto3
import pytest

from ecs_shipper.errors import DeploymentError, ResourceNotFoundError
from ecs_shipper.settings import get_settings
from ecs_shipper.state.rollback_manager import RollbackManager
from ecs_shipper.state.state_manager import StateManager
from tests.consts import TEST_CLUSTER_NAME, TEST_REGION, TEST_SERVICE_NAME


@pytest.fixture
def second_revision(provisioned_stack):
    """Roll the service forward to a second task definition revision."""
    ecs_client = boto3.client("ecs", region_name=TEST_REGION)
    current = ecs_client.describe_task_definition(
        taskDefinition=provisioned_stack["task_definition_arn"]
    )["taskDefinition"]
    original = current["containerDefinitions"][0]
    container = {
        "name": original["name"],
        "image": original["image"].rsplit(":", 1)[0] + ":v2",
        "essential": True,
        "portMappings": original["portMappings"],
    }

    arn = ecs_client.register_task_definition(
        family=current["family"],
        networkMode=current["networkMode"],
        requiresCompatibilities=current["requiresCompatibilities"],
        cpu=current["cpu"],
        memory=current["memory"],
        executionRoleArn=current["executionRoleArn"],
        containerDefinitions=[container],
    )["taskDefinition"]["taskDefinitionArn"]
    ecs_client.update_service(cluster=TEST_CLUSTER_NAME, service=TEST_SERVICE_NAME, taskDefinition=arn)
    return arn


def service_task_definition():
    ecs_client = boto3.client("ecs", region_name=TEST_REGION)
    (service,) = ecs_client.describe_services(cluster=TEST_CLUSTER_NAME, services=[TEST_SERVICE_NAME])["services"]
    return service["taskDefinition"]


def test_rollback_to_previous_revision(provisioned_stack, second_revision):
    result = RollbackManager().execute_rollback()

    assert result["from"] == second_revision
    assert result["to"] == provisioned_stack["task_definition_arn"]
    assert service_task_definition() == provisioned_stack["task_definition_arn"]

    (entry,) = StateManager(get_settings().state_file).history()
    assert entry["kind"] == "rollback"
    assert entry["previous_task_definition_arn"] == second_revision


def test_dry_run_changes_nothing(provisioned_stack, second_revision):
    result = RollbackManager().execute_rollback(dry_run=True)

    assert result["status"] == "would_rollback"
    assert service_task_definition() == second_revision
    assert StateManager(get_settings().state_file).history() == []


def test_explicit_revision(provisioned_stack, second_revision):
    result = RollbackManager().execute_rollback(revision=1)
    assert result["to"] == provisioned_stack["task_definition_arn"]


def test_rollback_to_current_revision_fails(second_revision):
    with pytest.raises(DeploymentError):
        RollbackManager().execute_rollback(revision=2)


def test_nothing_to_roll_back_to(provisioned_stack):
    with pytest.raises(DeploymentError, match="no ACTIVE revision"):
        RollbackManager().create_rollback_plan()


def test_rollback_without_service(mocked_aws):
    with pytest.raises(ResourceNotFoundError):
        RollbackManager().create_rollback_plan()
