"""
Deployment state management.

Tracks provisioned resources and a bounded history of image deployments,
so apply stays idempotent and rollbacks know what ran before.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

MAX_HISTORY = 50


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateManager:
    """Manages deployment state in a local JSON file."""

    def __init__(self, state_file: str = ".deployment_state.json"):
        self.state_file = state_file
        self.state = self._load_state()

    def _empty_state(self) -> Dict[str, Any]:
        return {
            "deployment_id": None,
            "created_at": None,
            "last_updated": None,
            "resources": {},
            "configuration": {},
            "history": [],
            "status": "not_deployed"
        }

    def _load_state(self) -> Dict[str, Any]:
        """Load deployment state from file."""
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    state = json.load(f)
                if not isinstance(state, dict):
                    raise ValueError(f"expected a JSON object, got {type(state).__name__}")
                base = self._empty_state()
                base.update(state)
                return base
            except (ValueError, IOError) as e:
                logger.warning(f"Ignoring unreadable state file {self.state_file}: {e}")

        return self._empty_state()

    def save_state(self):
        """Save current state to file."""
        self.state["last_updated"] = utcnow()

        try:
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2, default=str)
        except IOError as e:
            logger.warning(f"Could not save state file: {e}")

    def start_deployment(self, deployment_id: str):
        """Start a new deployment."""
        self.state.update({
            "deployment_id": deployment_id,
            "created_at": utcnow(),
            "status": "deploying",
        })
        self.save_state()

    def record_resource(self, resource_type: str, resource_id: str,
                        resource_data: Dict[str, Any]):
        """Record a created AWS resource."""
        resources = self.state.setdefault("resources", {})
        resources.setdefault(resource_type, {})[resource_id] = {
            **resource_data,
            "recorded_at": utcnow()
        }
        self.save_state()

    def forget_resource(self, resource_type: str, resource_id: str):
        """Drop a resource that has been deleted."""
        resources = self.state.get("resources", {})
        by_type = resources.get(resource_type, {})
        if by_type.pop(resource_id, None) is not None:
            if not by_type:
                resources.pop(resource_type, None)
            self.save_state()

    def list_resources(self, resource_type: Optional[str] = None) -> Dict[str, Any]:
        """List all recorded resources, optionally filtered by type."""
        resources = self.state.get("resources", {})
        if resource_type:
            return resources.get(resource_type, {})
        return resources

    def record_deployment(self, entry: Dict[str, Any]):
        """Append a deployment to the history (newest last, bounded)."""
        history = self.state.setdefault("history", [])
        history.append({**entry, "recorded_at": utcnow()})
        del history[:-MAX_HISTORY]
        self.save_state()

    def history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Deployments, newest first."""
        entries = list(reversed(self.state.get("history", [])))
        return entries[:limit] if limit is not None else entries

    def set_configuration(self, key: str, value: Any):
        """Set a configuration value."""
        self.state.setdefault("configuration", {})[key] = value
        self.save_state()

    def mark_deployment_complete(self):
        """Mark deployment as complete."""
        self.state["status"] = "deployed"
        self.state.pop("error", None)
        self.save_state()

    def mark_deployment_failed(self, error: str):
        """Mark deployment as failed."""
        self.state["status"] = "failed"
        self.state["error"] = error
        self.save_state()

    def mark_destroyed(self):
        """Mark the stack destroyed; resources that survived stay recorded."""
        self.state["status"] = "destroyed"
        self.save_state()
