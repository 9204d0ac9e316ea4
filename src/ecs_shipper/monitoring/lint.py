"""
Configuration consistency checks.

The same values (port, cluster, service, region, branch) are repeated across
settings, the Dockerfile, the CI workflow and the Terraform file. These checks
read the files on disk and report every place they disagree.
"""
import fnmatch
import logging
import re
import shlex
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from ecs_shipper.pipeline.workflow import CREDENTIAL_SECRETS, ACCOUNT_SECRET, load_workflow
from ecs_shipper.settings import Settings, get_settings
from ecs_shipper.stack import is_valid_fargate_size

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"

EXPOSE_PATTERN = re.compile(r"^\s*EXPOSE\s+(.+)$", re.IGNORECASE | re.MULTILINE)
CONTAINER_PORT_PATTERN = re.compile(r'"?containerPort"?\s*[:=]\s*(\d+)')


@dataclass
class LintFinding:
    check: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return f"[{self.severity}] {self.check}: {self.message}"


class LintReadError(Exception):
    """A checked file exists but cannot be read as UTF-8 text."""


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LintReadError(f"{path} could not be read: {e}") from e


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def normalize_triggers(on: Any) -> Dict[str, Any]:
    """`on: push`, `on: [push, pull_request]` and the mapping form, as one mapping."""
    if isinstance(on, str):
        return {on: {}}
    if isinstance(on, list):
        return {item: {} for item in on if isinstance(item, str)}
    if isinstance(on, dict):
        return on
    return {}


def workflow_steps(workflow: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Every mapping-shaped step of every job, with `run` coerced to a string."""
    jobs = workflow.get("jobs")
    if not isinstance(jobs, dict):
        return []
    steps = []
    for job in jobs.values():
        if not isinstance(job, dict):
            continue
        for step in as_list(job.get("steps")):
            if isinstance(step, dict):
                steps.append({**step, "run": str(step.get("run") or "")})
    return steps


def flag_values(command: str, flag: str) -> List[str]:
    """Values passed to `flag` anywhere in a shell command (`--flag v` or `--flag=v`)."""
    command = command.replace("\\\n", " ")
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()
    values = []
    for i, token in enumerate(tokens):
        if token == flag and i + 1 < len(tokens):
            values.append(tokens[i + 1])
        elif token.startswith(flag + "="):
            values.append(token[len(flag) + 1:])
    return values


def parse_expose_ports(dockerfile_text: str) -> List[int]:
    """Numeric ports named by EXPOSE instructions; variables are ignored."""
    ports = []
    for match in EXPOSE_PATTERN.finditer(dockerfile_text):
        for token in match.group(1).split():
            port = token.split("/", 1)[0]
            if port.isdigit():
                ports.append(int(port))
    return ports


class ConsistencyChecker:
    """Cross-checks settings against the Dockerfile, workflow and Terraform files."""

    def __init__(self, settings: Optional[Settings] = None, root: str = ".",
                 terraform_dir: str = "terraform"):
        self.settings = settings or get_settings()
        self.root = Path(root)
        self.terraform_dir = terraform_dir

    def run(self) -> List[LintFinding]:
        findings: List[LintFinding] = []
        findings.extend(self.check_ports())
        findings.extend(self.check_dockerfile())
        findings.extend(self.check_fargate_size())
        findings.extend(self.check_workflow())
        findings.extend(self.check_terraform())
        for finding in findings:
            log = logger.error if finding.severity == ERROR else logger.warning
            log(str(finding))
        return findings

    def check_ports(self) -> List[LintFinding]:
        settings = self.settings
        if settings.container_port != settings.app_port:
            return [LintFinding(
                "port-match", ERROR,
                f"container port {settings.container_port} does not match "
                f"application port {settings.app_port}"
            )]
        return []

    def check_dockerfile(self) -> List[LintFinding]:
        path = self.root / self.settings.dockerfile
        if not path.is_file():
            return []
        try:
            text = read_text(path)
        except LintReadError as e:
            return [LintFinding("dockerfile-read", ERROR, str(e))]
        ports = parse_expose_ports(text)
        if ports and self.settings.container_port not in ports:
            return [LintFinding(
                "dockerfile-expose", WARNING,
                f"{path.name} exposes {ports} but the container port is {self.settings.container_port}"
            )]
        return []

    def check_fargate_size(self) -> List[LintFinding]:
        settings = self.settings
        if settings.launch_type != "FARGATE":
            return []
        if not is_valid_fargate_size(settings.task_cpu, settings.task_memory):
            return [LintFinding(
                "fargate-size", ERROR,
                f"cpu {settings.task_cpu} with memory {settings.task_memory} is not a valid Fargate size"
            )]
        return []

    def check_workflow(self) -> List[LintFinding]:
        path = self.root / self.settings.workflow_path
        if not path.is_file():
            return []
        try:
            text = read_text(path)
            workflow = load_workflow(str(path))
        except LintReadError as e:
            return [LintFinding("workflow-syntax", ERROR, str(e))]
        except yaml.YAMLError as e:
            return [LintFinding("workflow-syntax", ERROR, f"{path} is not valid YAML: {e}")]
        if not isinstance(workflow, dict):
            return [LintFinding("workflow-syntax", ERROR, f"{path} is not a mapping")]

        settings = self.settings
        findings = []

        findings.extend(self._check_trigger(workflow))

        for name in CREDENTIAL_SECRETS + (ACCOUNT_SECRET,):
            if f"secrets.{name}" not in text:
                severity = WARNING if name == ACCOUNT_SECRET else ERROR
                findings.append(LintFinding(
                    "workflow-secrets", severity, f"workflow does not reference secret {name}"
                ))

        steps = workflow_steps(workflow)

        redeploy = [s["run"] for s in steps if "update-service" in s.get("run", "")]
        if not redeploy:
            findings.append(LintFinding("workflow-redeploy", ERROR, "workflow never runs ecs update-service"))
        else:
            command = redeploy[0]
            if settings.cluster_name not in flag_values(command, "--cluster"):
                findings.append(LintFinding(
                    "workflow-cluster", ERROR,
                    f"redeploy command does not target cluster {settings.cluster_name}"
                ))
            if settings.service_name not in flag_values(command, "--service"):
                findings.append(LintFinding(
                    "workflow-service", ERROR,
                    f"redeploy command does not target service {settings.service_name}"
                ))

        regions = [
            s["with"].get("aws-region") for s in steps
            if "configure-aws-credentials" in str(s.get("uses") or "") and isinstance(s.get("with"), dict)
        ]
        if regions and settings.aws_region not in regions:
            findings.append(LintFinding(
                "workflow-region", ERROR,
                f"workflow configures region {regions[0]}, expected {settings.aws_region}"
            ))
        return findings

    def _check_trigger(self, workflow: Dict[str, Any]) -> List[LintFinding]:
        branch = self.settings.deploy_branch
        triggers = normalize_triggers(workflow.get("on"))
        if "push" not in triggers:
            return [LintFinding(
                "workflow-branch", ERROR,
                f"workflow is not triggered by push (triggers: {sorted(triggers)})"
            )]

        push = triggers["push"] if isinstance(triggers["push"], dict) else {}
        branches = as_list(push.get("branches"))
        if not branches:
            if branch in as_list(push.get("branches-ignore")):
                return [LintFinding("workflow-branch", ERROR, f"workflow ignores pushes to {branch}")]
            return [LintFinding(
                "workflow-branch", WARNING,
                f"workflow deploys on pushes to every branch, expected only {branch}"
            )]
        if not any(fnmatch.fnmatchcase(branch, pattern) for pattern in branches):
            return [LintFinding(
                "workflow-branch", ERROR,
                f"workflow triggers on {branches}, expected {branch}"
            )]
        return []

    def check_terraform(self) -> List[LintFinding]:
        path = self.root / self.terraform_dir / "main.tf"
        if not path.is_file():
            return []
        try:
            text = read_text(path)
        except LintReadError as e:
            return [LintFinding("terraform-read", ERROR, str(e))]
        ports = [int(p) for p in CONTAINER_PORT_PATTERN.findall(text)]
        wrong = sorted({p for p in ports if p != self.settings.container_port})
        if wrong:
            return [LintFinding(
                "terraform-port", ERROR,
                f"{path} declares containerPort {wrong}, expected {self.settings.container_port}"
            )]
        return []


def has_errors(findings: List[LintFinding]) -> bool:
    return any(finding.severity == ERROR for finding in findings)
