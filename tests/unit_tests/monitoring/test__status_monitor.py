import json
from unittest.mock import MagicMock

import pytest

from ecs_shipper.monitoring import status_monitor
from ecs_shipper.monitoring.diagnostics import ContainerSummary, TaskSummary
from ecs_shipper.monitoring.status_monitor import (
    DEGRADED, HEALTHY, REMEDY_APPLY, REMEDY_IMAGE, REMEDY_PORT, UNHEALTHY, StatusMonitor,
)
from tests.consts import TEST_CLUSTER_NAME, TEST_SERVICE_NAME

TASK_DEF_ARN = "arn:aws:ecs:us-east-1:123456789012:task-definition/test-task:3"


@pytest.fixture
def fake_stack(monkeypatch):
    """A healthy cluster and service; tests adjust the returned mocks."""
    cluster_manager = MagicMock()
    cluster_manager.find_cluster.return_value = {"clusterName": TEST_CLUSTER_NAME, "status": "ACTIVE"}
    service_manager = MagicMock()
    service_manager.find_service.return_value = {
        "serviceName": TEST_SERVICE_NAME,
        "desiredCount": 1,
        "runningCount": 1,
        "pendingCount": 0,
        "taskDefinition": TASK_DEF_ARN,
        "deployments": [{"id": "ecs-svc/1"}],
    }
    builder = MagicMock()
    builder.container_port.return_value = 80
    stopped_tasks = []

    monkeypatch.setattr(status_monitor, "ECSClusterManager", lambda name, settings=None: cluster_manager)
    monkeypatch.setattr(status_monitor, "ECSServiceManager", lambda cluster, service, settings=None: service_manager)
    monkeypatch.setattr(status_monitor, "TaskDefinitionBuilder", lambda family, settings=None: builder)
    monkeypatch.setattr(status_monitor, "list_tasks", lambda *args, **kwargs: stopped_tasks)
    return {
        "cluster": cluster_manager,
        "service": service_manager,
        "builder": builder,
        "stopped": stopped_tasks,
    }


def stopped_task(reason="", exit_code=None, stop_code="EssentialContainerExited"):
    return TaskSummary(
        task_arn=f"arn:aws:ecs:us-east-1:123456789012:task/{TEST_CLUSTER_NAME}/abc123",
        task_definition_arn=TASK_DEF_ARN,
        last_status="STOPPED",
        desired_status="STOPPED",
        stop_code=stop_code,
        stopped_reason=reason,
        containers=[ContainerSummary(name="test-app", last_status="STOPPED", exit_code=exit_code)],
    )


def test_healthy_deployment(make_settings, fake_stack):
    report = StatusMonitor(make_settings()).check_deployment_health()

    assert report["overall_status"] == HEALTHY
    assert report["errors"] == []
    assert report["components"]["service"]["healthy"] is True
    assert report["components"]["task_definition"]["container_port"] == 80


def test_missing_cluster_is_unhealthy(make_settings, fake_stack):
    fake_stack["cluster"].find_cluster.return_value = None

    report = StatusMonitor(make_settings()).check_deployment_health()

    assert report["overall_status"] == UNHEALTHY
    assert REMEDY_APPLY in report["hints"]
    assert "service" not in report["components"]


def test_missing_service_is_unhealthy(make_settings, fake_stack):
    fake_stack["service"].find_service.return_value = None

    report = StatusMonitor(make_settings()).check_deployment_health()

    assert report["overall_status"] == UNHEALTHY
    assert f"Service {TEST_SERVICE_NAME} not found" in report["errors"]


def test_no_running_tasks_after_image_pull_failure(make_settings, fake_stack):
    fake_stack["service"].find_service.return_value["runningCount"] = 0
    fake_stack["stopped"].append(stopped_task(
        reason="CannotPullContainerError: failed to resolve ref", stop_code="TaskFailedToStart"
    ))

    report = StatusMonitor(make_settings()).check_deployment_health()

    assert report["overall_status"] == DEGRADED
    assert f"Service {TEST_SERVICE_NAME}: 0/1 tasks running" in report["errors"]
    (problem,) = report["components"]["tasks"]["problems"]
    assert problem["kind"] == "image-pull"
    assert REMEDY_IMAGE in report["hints"]


def test_crashing_container(make_settings, fake_stack):
    fake_stack["stopped"].append(stopped_task(exit_code=1))

    report = StatusMonitor(make_settings()).check_deployment_health()

    (problem,) = report["components"]["tasks"]["problems"]
    assert problem["kind"] == "crash"
    assert report["overall_status"] == DEGRADED


def test_port_mismatch(make_settings, fake_stack):
    report = StatusMonitor(make_settings(app_port=8080)).check_deployment_health()

    assert report["overall_status"] == DEGRADED
    assert REMEDY_PORT in report["hints"]


def test_text_report(make_settings, fake_stack):
    fake_stack["service"].find_service.return_value["runningCount"] = 0

    text = StatusMonitor(make_settings()).generate_status_report("text")

    assert "Overall Status: DEGRADED" in text
    assert f"❌ {TEST_SERVICE_NAME}: 0/1 tasks" in text
    assert "Suggested fixes:" in text


def test_json_report(make_settings, fake_stack):
    data = json.loads(StatusMonitor(make_settings()).generate_status_report("json"))
    assert data["overall_status"] == HEALTHY


def test_unsupported_format(make_settings, fake_stack):
    with pytest.raises(ValueError):
        StatusMonitor(make_settings()).generate_status_report("xml")


def test_against_empty_account(mocked_aws):
    report = StatusMonitor().check_deployment_health()
    assert report["overall_status"] == UNHEALTHY
