"""
Workflow Configuration Store.

Admin-defined templates saying which pipeline stages are mandatory for a
session. Sessions snapshot the resolved steps when they start, so updating a
configuration never changes sessions already in flight.

Usage
-----
    store = WorkflowConfigStore()
    config = store.create_configuration("Full KYC", WorkflowSteps())
    store.deactivate(config.config_id)
"""
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaValidationError

from models.kyc_models import WorkflowConfiguration, WorkflowSteps, utc_now
from utils.exceptions import ResourceNotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Fields an admin update may change
UPDATABLE_FIELDS = {"name", "steps", "form_id", "is_active"}


class WorkflowConfigStore:
    """In-memory keyed store of workflow configurations."""

    def __init__(self):
        self._configurations: Dict[str, WorkflowConfiguration] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create_configuration(
        self,
        name: str,
        steps: WorkflowSteps,
        form_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> WorkflowConfiguration:
        if not name or not name.strip():
            raise ValidationError("Workflow name is required", field="name")

        config = WorkflowConfiguration(
            config_id=str(uuid.uuid4()),
            name=name.strip(),
            steps=steps,
            form_id=form_id,
            created_by=created_by,
        )
        with self._lock:
            self._configurations[config.config_id] = config

        logger.info(f"Workflow configuration created: {config.config_id} ({config.name})")
        return config.model_copy(deep=True)

    def get_configuration(self, config_id: str) -> WorkflowConfiguration:
        with self._lock:
            config = self._configurations.get(config_id)
            if config is None:
                raise ResourceNotFoundError("WorkflowConfiguration", config_id)
            return config.model_copy(deep=True)

    def list_configurations(self, active_only: bool = False) -> List[WorkflowConfiguration]:
        with self._lock:
            configs = list(self._configurations.values())
        return [c.model_copy(deep=True) for c in configs if c.is_active or not active_only]

    def update_configuration(self, config_id: str, updates: Dict[str, Any]) -> WorkflowConfiguration:
        """
        Apply a partial update.

        Raises:
            ValidationError: If an unknown or immutable field is supplied
            ResourceNotFoundError: If the configuration does not exist
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}",
                details={"allowed": sorted(UPDATABLE_FIELDS)},
            )
        if "name" in updates:
            name = updates["name"]
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Workflow name is required", field="name")
            updates = {**updates, "name": name.strip()}
        if "steps" in updates and not isinstance(updates["steps"], WorkflowSteps):
            try:
                updates = {**updates, "steps": WorkflowSteps.model_validate(updates["steps"])}
            except SchemaValidationError as e:
                raise ValidationError(
                    "Invalid workflow steps",
                    field="steps",
                    details={"errors": e.errors(include_url=False, include_context=False)},
                ) from e

        with self._lock:
            config = self._configurations.get(config_id)
            if config is None:
                raise ResourceNotFoundError("WorkflowConfiguration", config_id)

            updated = config.model_copy(update={**updates, "updated_at": utc_now()}, deep=True)
            self._configurations[config_id] = updated

        logger.info(f"Workflow configuration updated: {config_id}")
        return updated.model_copy(deep=True)

    def activate(self, config_id: str) -> WorkflowConfiguration:
        return self.update_configuration(config_id, {"is_active": True})

    def deactivate(self, config_id: str) -> WorkflowConfiguration:
        return self.update_configuration(config_id, {"is_active": False})

    def delete_configuration(self, config_id: str) -> None:
        with self._lock:
            if self._configurations.pop(config_id, None) is None:
                raise ResourceNotFoundError("WorkflowConfiguration", config_id)
        logger.info(f"Workflow configuration deleted: {config_id}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def generate_link(self, config_id: str, base_url: str) -> str:
        """Applicant-facing link that starts a session under this configuration."""
        self.get_configuration(config_id)
        link = f"{base_url.rstrip('/')}/kyc/{config_id}"
        logger.info(f"Generated link for config {config_id}: {link}")
        return link

    def validate_configuration(self, config_id: str) -> Dict[str, Any]:
        """Check that a configuration exists, is active and enables at least one step."""
        errors: List[str] = []
        with self._lock:
            config = self._configurations.get(config_id)

        if config is None:
            return {"is_valid": False, "errors": ["Configuration not found"]}

        if not config.is_active:
            errors.append("Configuration is not active")
        if not config.steps.enabled_steps():
            errors.append("At least one workflow step must be enabled")

        return {"is_valid": not errors, "errors": errors}

    def get_statistics(self) -> Dict[str, int]:
        with self._lock:
            configs = list(self._configurations.values())
        active = sum(1 for c in configs if c.is_active)
        return {"total": len(configs), "active": active, "inactive": len(configs) - active}
