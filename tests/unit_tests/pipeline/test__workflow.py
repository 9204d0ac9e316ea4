from ecs_shipper.pipeline.workflow import build_workflow, load_workflow, render_workflow, write_workflow
from tests.consts import TEST_CLUSTER_NAME, TEST_REGION, TEST_SERVICE_NAME


def step_names(workflow):
    return [step["name"] for step in workflow["jobs"]["deploy"]["steps"]]


def test_workflow_steps_in_order(make_settings):
    workflow = build_workflow(make_settings())

    assert workflow["on"] == {"push": {"branches": ["main"]}}
    assert step_names(workflow) == [
        "Checkout Code",
        "Configure AWS Credentials",
        "Login to AWS ECR",
        "Delete Previous Image",
        "Build & Push Docker Image",
        "Deploy to AWS ECS",
    ]


def test_optional_steps(make_settings):
    workflow = build_workflow(make_settings(delete_previous_image=False, wait_for_stable=True))
    names = step_names(workflow)

    assert "Delete Previous Image" not in names
    assert names[-1] == "Wait for Service Stability"


def test_previous_image_delete_never_fails_the_job(make_settings):
    steps = build_workflow(make_settings())["jobs"]["deploy"]["steps"]
    delete_step = next(step for step in steps if step["name"] == "Delete Previous Image")
    assert delete_step["run"].rstrip().endswith("|| true")


def test_rendered_yaml_round_trips(make_settings, tmp_path):
    settings = make_settings(deploy_branch="release")
    text = render_workflow(settings)

    assert "${{ secrets.AWS_ACCESS_KEY_ID }}" in text
    assert "run: |" in text

    path = write_workflow(settings, str(tmp_path / ".github" / "workflows" / "deploy.yml"))
    loaded = load_workflow(str(path))

    assert loaded["on"]["push"]["branches"] == ["release"]
    deploy_step = loaded["jobs"]["deploy"]["steps"][-1]
    assert f"--cluster {TEST_CLUSTER_NAME}" in deploy_step["run"]
    assert f"--service {TEST_SERVICE_NAME}" in deploy_step["run"]
    assert f"--region {TEST_REGION}" in deploy_step["run"]
