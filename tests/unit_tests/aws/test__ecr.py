import json

import boto3

from ecs_shipper.aws.ecr import ECRRepositoryManager
from ecs_shipper.stack import RepositorySpec
from tests.consts import TEST_REGION, TEST_REPO_NAME

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"


def push_fake_image(tag):
    ecr_client = boto3.client("ecr", region_name=TEST_REGION)
    manifest = json.dumps({
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST_V2,
        "config": {"mediaType": "application/vnd.docker.container.image.v1+json", "digest": f"sha256:{tag}"},
        "layers": [],
    })
    ecr_client.put_image(repositoryName=TEST_REPO_NAME, imageManifest=manifest,
                         imageManifestMediaType=DOCKER_MANIFEST_V2, imageTag=tag)


def test_ensure_repository_is_idempotent(mocked_aws):
    manager = ECRRepositoryManager(TEST_REPO_NAME)
    assert manager.describe_repository() is None

    created = manager.ensure_repository(RepositorySpec(TEST_REPO_NAME), {"Project": "test"})
    again = manager.ensure_repository(RepositorySpec(TEST_REPO_NAME))

    assert created["repositoryName"] == TEST_REPO_NAME
    assert again["repositoryUri"] == created["repositoryUri"]
    assert manager.repository_exists()


def test_delete_image_by_tag(mocked_aws):
    manager = ECRRepositoryManager(TEST_REPO_NAME)
    manager.ensure_repository(RepositorySpec(TEST_REPO_NAME))
    push_fake_image("latest")

    assert manager.image_exists("latest")
    assert manager.delete_image("latest") is True
    assert not manager.image_exists("latest")
    assert manager.delete_image("latest") is False


def test_get_login_decodes_token(mocked_aws):
    manager = ECRRepositoryManager(TEST_REPO_NAME)
    username, password, endpoint = manager.get_login()

    assert username == "AWS"
    assert password
    assert endpoint.startswith("https://")


def test_delete_missing_repository(mocked_aws):
    assert ECRRepositoryManager(TEST_REPO_NAME).delete_repository() is False
