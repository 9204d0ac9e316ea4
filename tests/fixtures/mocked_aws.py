"""AWS fixtures: moto-backed accounts and settings pointed at them."""
import pytest
from moto import mock_aws

from ecs_shipper.aws.clients import AWSClientManager
from ecs_shipper.settings import Settings, get_settings
from tests.consts import (
    TEST_REGION, TEST_ACCOUNT_ID, TEST_REPO_NAME, TEST_CLUSTER_NAME, TEST_SERVICE_NAME,
    TEST_TASK_FAMILY, TEST_CONTAINER_NAME, TEST_APP_NAME,
)


@pytest.fixture
def test_env(tmp_path, monkeypatch):
    """Environment for a production-mode run against fake credentials."""
    env = {
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
        "AWS_SECURITY_TOKEN": "testing",
        "AWS_SESSION_TOKEN": "testing",
        "AWS_DEFAULT_REGION": TEST_REGION,
        "DEPLOYMENT_MODE": "aws-prod",
        "APP_NAME": TEST_APP_NAME,
        "ECR_REPO_NAME": TEST_REPO_NAME,
        "CLUSTER_NAME": TEST_CLUSTER_NAME,
        "SERVICE_NAME": TEST_SERVICE_NAME,
        "TASK_FAMILY": TEST_TASK_FAMILY,
        "CONTAINER_NAME": TEST_CONTAINER_NAME,
        "STATE_FILE": str(tmp_path / "state.json"),
        "LOG_LEVEL": "WARNING",
        "MOTO_IAM_LOAD_MANAGED_POLICIES": "true",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    for key in ("AWS_PROFILE", "AWS_ENDPOINT_URL", "AWS_ACCOUNT_ID"):
        monkeypatch.delenv(key, raising=False)

    get_settings.cache_clear()
    AWSClientManager.reset()
    yield env
    get_settings.cache_clear()
    AWSClientManager.reset()


@pytest.fixture
def mocked_aws(test_env):
    """Moto-backed AWS for the duration of a test."""
    with mock_aws():
        yield


@pytest.fixture
def make_settings(tmp_path):
    """Build Settings without reading .env files or the process environment defaults."""
    def _make(**overrides) -> Settings:
        values = {
            "AWS_DEFAULT_REGION": TEST_REGION,
            "AWS_ACCOUNT_ID": TEST_ACCOUNT_ID,
            "app_name": TEST_APP_NAME,
            "ecr_repo_name": TEST_REPO_NAME,
            "cluster_name": TEST_CLUSTER_NAME,
            "service_name": TEST_SERVICE_NAME,
            "task_family": TEST_TASK_FAMILY,
            "container_name": TEST_CONTAINER_NAME,
            "deployment_mode": "aws-prod",
            "state_file": str(tmp_path / "state.json"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def provisioned_stack(mocked_aws):
    """A stack applied to the moto account; yields the apply result."""
    from ecs_shipper.infrastructure.provisioner import StackProvisioner

    yield StackProvisioner().apply()
