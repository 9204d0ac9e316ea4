"""Thin wrapper over the docker CLI."""
import logging
import subprocess
from typing import List, Optional

from ecs_shipper.errors import DockerError

logger = logging.getLogger(__name__)


class DockerClient:
    """Runs docker commands as subprocesses; any failure raises DockerError."""

    def __init__(self, executable: str = "docker"):
        self.executable = executable

    def _run(self, args: List[str], input_text: Optional[str] = None,
             cwd: Optional[str] = None) -> subprocess.CompletedProcess:
        command = [self.executable, *args]
        logger.info(f"Running: {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                input=input_text,
                cwd=cwd,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            raise DockerError(command, e.returncode, e.stderr or "") from e
        except FileNotFoundError as e:
            raise DockerError(command, None, f"{self.executable} executable not found") from e

    def login(self, registry: str, username: str, password: str) -> None:
        # Password goes through stdin so it never shows up in the process list
        self._run(["login", "--username", username, "--password-stdin", registry],
                  input_text=password)
        logger.info(f"Logged in to {registry}")

    def build(self, tag: str, context: str = ".", dockerfile: str = "Dockerfile") -> None:
        self._run(["build", "-t", tag, "-f", dockerfile, context])
        logger.info(f"Built image {tag}")

    def tag(self, source: str, target: str) -> None:
        self._run(["tag", source, target])

    def push(self, image: str) -> str:
        """Push an image and return the pushed digest when docker reports one."""
        result = self._run(["push", image])
        digest = ""
        for line in result.stdout.splitlines():
            if "digest:" in line:
                digest = line.split("digest:", 1)[1].split()[0]
        logger.info(f"Pushed image {image} {digest}".rstrip())
        return digest
