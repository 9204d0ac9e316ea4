import boto3

from ecs_shipper.infrastructure.provisioner import CREATE, NO_OP, UPDATE, StackProvisioner
from ecs_shipper.settings import get_settings
from ecs_shipper.state.state_manager import StateManager
from tests.consts import TEST_CLUSTER_NAME, TEST_REGION, TEST_REPO_NAME, TEST_SERVICE_NAME


def actions(changes):
    return {change.resource_type: change.action for change in changes}


def test_plan_on_empty_account_creates_everything(mocked_aws):
    changes = StackProvisioner().plan()

    assert actions(changes) == {
        "iam_role": CREATE,
        "ecr_repository": CREATE,
        "ecs_cluster": CREATE,
        "log_group": CREATE,
        "security_group": CREATE,
        "task_definition": CREATE,
        "ecs_service": CREATE,
    }
    assert str(changes[0]).startswith("+ iam_role")


def test_apply_creates_stack(provisioned_stack):
    result = provisioned_stack

    assert result["status"] == "success"
    assert result["repository_uri"].endswith(f"/{TEST_REPO_NAME}")
    assert result["task_definition_arn"].endswith(":1")

    ecs_client = boto3.client("ecs", region_name=TEST_REGION)
    (service,) = ecs_client.describe_services(cluster=TEST_CLUSTER_NAME,
                                              services=[TEST_SERVICE_NAME])["services"]
    assert service["desiredCount"] == 1
    assert service["launchType"] == "FARGATE"
    assert service["taskDefinition"] == result["task_definition_arn"]

    state = StateManager(get_settings().state_file)
    assert state.state["status"] == "deployed"
    assert TEST_SERVICE_NAME in state.list_resources("ecs_service")
    assert state.state["configuration"]["region"] == TEST_REGION
    assert state.state["configuration"]["network"]["security_groups"] == result["security_groups"]


def test_apply_is_idempotent(provisioned_stack):
    second = StackProvisioner().apply()

    assert second["task_definition_arn"] == provisioned_stack["task_definition_arn"]
    assert second["security_groups"] == provisioned_stack["security_groups"]
    assert set(actions(StackProvisioner().plan()).values()) == {NO_OP}


def test_changed_port_registers_new_revision(provisioned_stack, monkeypatch):
    monkeypatch.setenv("CONTAINER_PORT", "8080")
    monkeypatch.setenv("APP_PORT", "8080")
    get_settings.cache_clear()

    plan = actions(StackProvisioner().plan())
    assert plan["task_definition"] == UPDATE
    assert plan["ecs_service"] == UPDATE

    result = StackProvisioner().apply()
    assert result["task_definition_arn"].endswith(":2")


def test_destroy_removes_stack(provisioned_stack):
    result = StackProvisioner().destroy()

    assert result["service_deleted"] is True
    assert result["repository_deleted"] is True
    assert result["log_group_deleted"] is True
    state = StateManager(get_settings().state_file)
    assert state.state["status"] == "destroyed"
    assert set(state.list_resources()) == {"iam_role"}


def test_destroy_can_keep_repository(provisioned_stack):
    result = StackProvisioner().destroy(keep_repository=True)

    assert result["repository_deleted"] is False
    ecr_client = boto3.client("ecr", region_name=TEST_REGION)
    assert ecr_client.describe_repositories(repositoryNames=[TEST_REPO_NAME])["repositories"]
    assert set(StateManager(get_settings().state_file).list_resources()) == {"iam_role", "ecr_repository"}


def test_apply_uses_region_of_given_settings(mocked_aws, make_settings):
    settings = make_settings(AWS_DEFAULT_REGION="eu-west-1")

    result = StackProvisioner(settings).apply()

    assert ":eu-west-1:" in result["cluster_arn"]
    eu_clusters = boto3.client("ecs", region_name="eu-west-1").list_clusters()["clusterArns"]
    default_clusters = boto3.client("ecs", region_name=TEST_REGION).list_clusters()["clusterArns"]
    assert eu_clusters == [result["cluster_arn"]]
    assert default_clusters == []
