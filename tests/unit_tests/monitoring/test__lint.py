from pathlib import Path

import pytest

from ecs_shipper.infrastructure.terraform import write_terraform
from ecs_shipper.monitoring.lint import ERROR, WARNING, ConsistencyChecker, has_errors, parse_expose_ports
from ecs_shipper.pipeline.workflow import write_workflow
from ecs_shipper.stack import StackSpec


@pytest.fixture
def project(tmp_path, make_settings):
    """A project directory whose files all agree with the settings."""
    settings = make_settings()
    (tmp_path / "Dockerfile").write_text("FROM nginx:alpine\nEXPOSE 80\n")
    write_workflow(settings, str(tmp_path / settings.workflow_path))
    write_terraform(StackSpec.from_settings(settings), str(tmp_path / "terraform"))
    return tmp_path


def checks(findings):
    return {finding.check: finding.severity for finding in findings}


def test_parse_expose_ports():
    text = "FROM python:3.12\nEXPOSE 8000/tcp 9000\nexpose $PORT\n"
    assert parse_expose_ports(text) == [8000, 9000]


def test_consistent_project_is_clean(project, make_settings):
    assert ConsistencyChecker(make_settings(), str(project)).run() == []


def test_empty_directory_only_checks_settings(tmp_path, make_settings):
    findings = ConsistencyChecker(make_settings(app_port=8080), str(tmp_path)).run()
    assert checks(findings) == {"port-match": ERROR}


def test_port_mismatch_everywhere(project, make_settings):
    findings = ConsistencyChecker(make_settings(container_port=8080, app_port=8080), str(project)).run()

    assert checks(findings) == {"dockerfile-expose": WARNING, "terraform-port": ERROR}
    assert has_errors(findings)


def test_invalid_fargate_size(tmp_path, make_settings):
    findings = ConsistencyChecker(make_settings(task_cpu="256", task_memory="4096"), str(tmp_path)).run()
    assert checks(findings) == {"fargate-size": ERROR}


def test_fargate_size_ignored_for_ec2(tmp_path, make_settings):
    settings = make_settings(task_cpu="300", task_memory="300", launch_type="EC2")
    assert ConsistencyChecker(settings, str(tmp_path)).run() == []


def test_workflow_drift(project, make_settings):
    findings = ConsistencyChecker(
        make_settings(deploy_branch="release", cluster_name="other-cluster", AWS_DEFAULT_REGION="eu-west-1"),
        str(project),
        terraform_dir="missing",
    ).run()

    assert checks(findings) == {
        "workflow-branch": ERROR,
        "workflow-cluster": ERROR,
        "workflow-region": ERROR,
    }


def test_workflow_without_secrets(project, make_settings):
    settings = make_settings()
    path = Path(project) / settings.workflow_path
    path.write_text(path.read_text().replace("secrets.AWS_SECRET_ACCESS_KEY", "env.KEY"))

    findings = ConsistencyChecker(settings, str(project)).run()

    assert [f.message for f in findings] == ["workflow does not reference secret AWS_SECRET_ACCESS_KEY"]


def test_broken_workflow_yaml(project, make_settings):
    settings = make_settings()
    (Path(project) / settings.workflow_path).write_text("jobs: [unclosed\n")

    findings = ConsistencyChecker(settings, str(project)).run()

    assert checks(findings) == {"workflow-syntax": ERROR}


def write_workflow_text(project, settings, text):
    (Path(project) / settings.workflow_path).write_text(text)


REDEPLOY_STEPS = """
jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - run: echo ${{{{ secrets.AWS_ACCESS_KEY_ID }}}} ${{{{ secrets.AWS_SECRET_ACCESS_KEY }}}} ${{{{ secrets.AWS_ACCOUNT_ID }}}}
      - run: aws ecs update-service --cluster {cluster} --service {service} --force-new-deployment
"""


@pytest.mark.parametrize("trigger", ["on: push", "on: [push, workflow_dispatch]"])
def test_workflow_short_trigger_forms(project, make_settings, trigger):
    settings = make_settings()
    write_workflow_text(project, settings, trigger + REDEPLOY_STEPS.format(
        cluster=settings.cluster_name, service=settings.service_name))

    findings = ConsistencyChecker(settings, str(project)).run()

    assert checks(findings) == {"workflow-branch": WARNING}
    assert not has_errors(findings)


def test_workflow_without_push_trigger(project, make_settings):
    settings = make_settings()
    write_workflow_text(project, settings, "on: workflow_dispatch" + REDEPLOY_STEPS.format(
        cluster=settings.cluster_name, service=settings.service_name))

    findings = ConsistencyChecker(settings, str(project)).run()

    assert checks(findings) == {"workflow-branch": ERROR}


@pytest.mark.parametrize("branches, expected", [
    ("main", {}),
    ("'releases/*'", {"workflow-branch": ERROR}),
    ("[develop, 'ma*']", {}),
    ("mainline", {"workflow-branch": ERROR}),
])
def test_workflow_branch_filters(project, make_settings, branches, expected):
    settings = make_settings()
    trigger = f"on:\n  push:\n    branches: {branches}\n"
    write_workflow_text(project, settings, trigger + REDEPLOY_STEPS.format(
        cluster=settings.cluster_name, service=settings.service_name))

    assert checks(ConsistencyChecker(settings, str(project)).run()) == expected


def test_workflow_cluster_name_must_match_exactly(project, make_settings):
    settings = make_settings(cluster_name="demo")
    write_workflow_text(project, settings, "on: push" + REDEPLOY_STEPS.format(
        cluster="demo-cluster", service=settings.service_name))

    findings = ConsistencyChecker(settings, str(project)).run()

    assert checks(findings)["workflow-cluster"] == ERROR


def test_workflow_with_odd_shapes(project, make_settings):
    settings = make_settings()
    write_workflow_text(project, settings, "on: push\njobs:\n  deploy: not-a-job\n  other:\n    steps: [plain, 3]\n")

    findings = ConsistencyChecker(settings, str(project)).run()

    assert checks(findings)["workflow-redeploy"] == ERROR


def test_workflow_that_is_not_a_mapping(project, make_settings):
    settings = make_settings()
    write_workflow_text(project, settings, "- just\n- a list\n")

    assert checks(ConsistencyChecker(settings, str(project)).run()) == {"workflow-syntax": ERROR}


def test_unreadable_dockerfile_is_reported(project, make_settings):
    (Path(project) / "Dockerfile").write_bytes(b"FROM nginx\nEXPOSE \xff80\n")

    findings = ConsistencyChecker(make_settings(), str(project)).run()

    assert checks(findings) == {"dockerfile-read": ERROR}
