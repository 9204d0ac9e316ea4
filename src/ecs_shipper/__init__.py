"""Provision an ECS service and ship container images to it."""

__version__ = "0.1.0"
