"""CI workflow rendering (GitHub Actions)."""
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from ecs_shipper.settings import Settings, get_settings

logger = logging.getLogger(__name__)

CREDENTIAL_SECRETS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY")
ACCOUNT_SECRET = "AWS_ACCOUNT_ID"


def secret(name: str) -> str:
    return "${{ secrets.%s }}" % name


def build_workflow(settings: Settings) -> Dict[str, Any]:
    """Build the workflow document as plain data."""
    region = settings.aws_region
    registry = f"{secret(ACCOUNT_SECRET)}.dkr.ecr.{region}.amazonaws.com"
    local_image = f"{settings.ecr_repo_name}:{settings.image_tag}"
    remote_image = f"{registry}/{settings.ecr_repo_name}:{settings.image_tag}"

    steps = [
        {"name": "Checkout Code", "uses": "actions/checkout@v4"},
        {
            "name": "Configure AWS Credentials",
            "uses": "aws-actions/configure-aws-credentials@v4",
            "with": {
                "aws-access-key-id": secret(CREDENTIAL_SECRETS[0]),
                "aws-secret-access-key": secret(CREDENTIAL_SECRETS[1]),
                "aws-region": region,
            },
        },
        {
            "name": "Login to AWS ECR",
            "run": (f"aws ecr get-login-password --region {region} | "
                    f"docker login --username AWS --password-stdin {registry}\n"),
        },
    ]

    if settings.delete_previous_image:
        steps.append({
            "name": "Delete Previous Image",
            "run": (f"aws ecr batch-delete-image --region {region} "
                    f"--repository-name {settings.ecr_repo_name} "
                    f"--image-ids imageTag={settings.image_tag} || true\n"),
        })

    steps.extend([
        {
            "name": "Build & Push Docker Image",
            "run": "\n".join([
                f"docker build -t {local_image} -f {settings.dockerfile} {settings.build_context}",
                f"docker tag {local_image} {remote_image}",
                f"docker push {remote_image}",
            ]) + "\n",
        },
        {
            "name": "Deploy to AWS ECS",
            "run": (f"aws ecs update-service --region {region} "
                    f"--cluster {settings.cluster_name} --service {settings.service_name} "
                    f"--force-new-deployment\n"),
        },
    ])

    if settings.wait_for_stable:
        steps.append({
            "name": "Wait for Service Stability",
            "run": (f"aws ecs wait services-stable --region {region} "
                    f"--cluster {settings.cluster_name} --services {settings.service_name}\n"),
        })

    return {
        "name": "Deploy to AWS ECS",
        "on": {"push": {"branches": [settings.deploy_branch]}},
        "jobs": {
            "deploy": {
                "runs-on": "ubuntu-latest",
                "steps": steps,
            }
        },
    }


class _WorkflowDumper(yaml.SafeDumper):
    """Safe dumper that writes multi-line run scripts as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_WorkflowDumper.add_representer(str, _represent_str)


def render_workflow(settings: Optional[Settings] = None) -> str:
    """Render the deployment workflow as YAML text."""
    settings = settings or get_settings()
    return yaml.dump(build_workflow(settings), Dumper=_WorkflowDumper,
                     sort_keys=False, default_flow_style=False, width=1000)


def write_workflow(settings: Optional[Settings] = None, path: Optional[str] = None) -> Path:
    """Write the workflow file (default .github/workflows/deploy.yml) and return its path."""
    settings = settings or get_settings()
    target = Path(path or settings.workflow_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_workflow(settings), encoding="utf-8")
    logger.info(f"Wrote workflow: {target}")
    return target


def load_workflow(path: str) -> Dict[str, Any]:
    """Load a workflow file.

    YAML 1.1 reads an unquoted `on:` key as boolean True; it is mapped back
    to "on" here.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if isinstance(data, dict) and True in data and "on" not in data:
        data["on"] = data.pop(True)
    return data
