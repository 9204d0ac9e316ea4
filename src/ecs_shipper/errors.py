"""Exception types raised by ecs-shipper."""
from typing import List, Optional


class ShipperError(Exception):
    """Base class for all ecs-shipper errors."""


class ConfigurationError(ShipperError):
    """Settings are missing or inconsistent."""


class ResourceNotFoundError(ShipperError):
    """An AWS resource the operation depends on does not exist."""

    def __init__(self, resource_type: str, name: str, hint: Optional[str] = None):
        self.resource_type = resource_type
        self.name = name
        self.hint = hint
        message = f"{resource_type} '{name}' not found"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)


class DockerError(ShipperError):
    """A docker CLI invocation failed."""

    def __init__(self, command: List[str], returncode: Optional[int] = None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        rendered = " ".join(command)
        if returncode is None:
            message = f"Could not run '{rendered}': {stderr}"
        else:
            message = f"'{rendered}' exited with code {returncode}"
            if stderr:
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class DeploymentError(ShipperError):
    """A deployment step failed."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"{step}: {message}")
