"""
Image deployment pipeline.

The fixed, linear sequence a push to the deploy branch runs: authenticate
against the registry, optionally delete the image holding the target tag,
build, tag, push, and force the service to redeploy. Only the delete step is
best effort; the first other failure stops the pipeline and the remaining
steps are reported as skipped.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, Any, List, Optional

from ecs_shipper.aws.ecr import ECRRepositoryManager
from ecs_shipper.aws.ecs_services import ECSServiceManager
from ecs_shipper.errors import DeploymentError, ResourceNotFoundError
from ecs_shipper.pipeline.docker import DockerClient
from ecs_shipper.settings import Settings, get_settings
from ecs_shipper.state.state_manager import StateManager

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
IGNORED = "ignored"
SKIPPED = "skipped"


@dataclass
class StepResult:
    name: str
    status: str
    duration: float = 0.0
    detail: str = ""


@dataclass
class DeploymentResult:
    deployment_id: str
    image_uri: str
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    image_digest: str = ""

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(step.status != FAILED for step in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        return next((step for step in self.steps if step.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["succeeded"] = self.succeeded
        return result


@dataclass
class PipelineStep:
    name: str
    action: Callable[[], Optional[str]]
    best_effort: bool = False
    enabled: bool = True


class DeployPipeline:
    """Builds, pushes and rolls out one image."""

    def __init__(self, settings: Optional[Settings] = None,
                 docker: Optional[DockerClient] = None,
                 state_manager: Optional[StateManager] = None):
        self.settings = settings or get_settings()
        self.docker = docker or DockerClient()
        self.state_manager = state_manager or StateManager(self.settings.state_file)
        self.repository_manager = ECRRepositoryManager(self.settings.ecr_repo_name, self.settings)
        self.service_manager = ECSServiceManager(self.settings.cluster_name, self.settings.service_name, self.settings)
        self.image_digest = ""

    @property
    def local_image(self) -> str:
        return f"{self.settings.ecr_repo_name}:{self.settings.image_tag}"

    def steps(self) -> List[PipelineStep]:
        settings = self.settings
        return [
            PipelineStep("authenticate", self.authenticate),
            PipelineStep("delete-previous-image", self.delete_previous_image,
                         best_effort=True, enabled=settings.delete_previous_image),
            PipelineStep("build", self.build),
            PipelineStep("tag", self.tag),
            PipelineStep("push", self.push),
            PipelineStep("redeploy", self.redeploy),
            PipelineStep("wait-stable", self.wait_stable, enabled=settings.wait_for_stable),
        ]

    # Steps

    def authenticate(self) -> str:
        if not self.repository_manager.repository_exists():
            raise ResourceNotFoundError("ECR repository", self.settings.ecr_repo_name,
                                        hint="run 'ecs-shipper apply' first")
        username, password, _endpoint = self.repository_manager.get_login()
        self.docker.login(self.settings.ecr_registry, username, password)
        return self.settings.ecr_registry

    def delete_previous_image(self) -> str:
        deleted = self.repository_manager.delete_image(self.settings.image_tag)
        return "deleted" if deleted else "nothing to delete"

    def build(self) -> str:
        self.docker.build(self.local_image, self.settings.build_context, self.settings.dockerfile)
        return self.local_image

    def tag(self) -> str:
        self.docker.tag(self.local_image, self.settings.image_uri)
        return self.settings.image_uri

    def push(self) -> str:
        self.image_digest = self.docker.push(self.settings.image_uri)
        return self.image_digest or self.settings.image_uri

    def redeploy(self) -> str:
        service = self.service_manager.force_new_deployment()
        return service.get('taskDefinition', '')

    def wait_stable(self) -> str:
        self.service_manager.wait_until_stable()
        return "stable"

    # Runner

    def run(self) -> DeploymentResult:
        """Run every step in order and record the outcome in the deployment history."""
        result = DeploymentResult(
            deployment_id=f"deploy-{uuid.uuid4().hex[:12]}",
            image_uri=self.settings.image_uri,
        )
        logger.info(f"Starting deployment {result.deployment_id} of {result.image_uri}")

        failed = False
        for step in self.steps():
            if failed or not step.enabled:
                result.steps.append(StepResult(step.name, SKIPPED))
                continue
            result.steps.append(self._run_step(step))
            if result.steps[-1].status == FAILED:
                failed = True
                result.error = str(DeploymentError(step.name, result.steps[-1].detail))

        result.image_digest = self.image_digest
        self._record(result)

        if result.succeeded:
            logger.info(f"✅ Deployment {result.deployment_id} completed")
        else:
            logger.error(f"❌ Deployment {result.deployment_id} failed: {result.error}")
        return result

    def _run_step(self, step: PipelineStep) -> StepResult:
        logger.info(f"Step: {step.name}")
        start_time = time.time()
        try:
            detail = step.action() or ""
            status = SUCCEEDED
        except Exception as e:
            if not step.best_effort:
                logger.error(f"Step {step.name} failed: {e}")
                return StepResult(step.name, FAILED, time.time() - start_time, str(e))
            # Same as "|| true": the pipeline carries on
            logger.warning(f"Step {step.name} failed, continuing: {e}")
            detail = str(e)
            status = IGNORED
        return StepResult(step.name, status, time.time() - start_time, detail)

    def _record(self, result: DeploymentResult) -> None:
        service = {}
        if result.succeeded:
            try:
                service = self.service_manager.find_service() or {}
            except Exception as e:
                logger.warning(f"Could not read service after deployment: {e}")
        self.state_manager.record_deployment({
            "deployment_id": result.deployment_id,
            "kind": "deploy",
            "image_uri": result.image_uri,
            "image_digest": result.image_digest,
            "task_definition_arn": service.get('taskDefinition'),
            "succeeded": result.succeeded,
            "error": result.error,
            "steps": [asdict(step) for step in result.steps],
        })


def redeploy_service(settings: Optional[Settings] = None, wait: bool = False,
                     state_manager: Optional[StateManager] = None) -> Dict[str, Any]:
    """Force a new deployment of the service without building anything."""
    settings = settings or get_settings()
    state_manager = state_manager or StateManager(settings.state_file)
    service_manager = ECSServiceManager(settings.cluster_name, settings.service_name, settings)

    service = service_manager.force_new_deployment()
    if wait:
        service_manager.wait_until_stable()

    state_manager.record_deployment({
        "deployment_id": f"redeploy-{uuid.uuid4().hex[:12]}",
        "kind": "redeploy",
        "image_uri": settings.image_uri,
        "task_definition_arn": service.get('taskDefinition'),
        "succeeded": True,
        "error": None,
    })
    return service
