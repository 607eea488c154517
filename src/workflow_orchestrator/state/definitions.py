from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from workflow_orchestrator.orchestrator.workflow.errors import DefinitionError
from workflow_orchestrator.orchestrator.workflow.models import WorkflowDefinitionRecord
from workflow_orchestrator.orchestrator.workflow.validation import load_definition

from .base import JsonRecordStore, utc_iso_now

logger = logging.getLogger(__name__)


@dataclass
class DefinitionStore(JsonRecordStore[WorkflowDefinitionRecord]):
    """Versioned workflow definitions.

    Versions of one name share that name; at most one of them is active.
    Registering or activating an active version deactivates the others.
    """

    record_type = WorkflowDefinitionRecord

    def register(
        self,
        definition_json: Mapping[str, Any],
        *,
        name: str | None = None,
        version: int | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> WorkflowDefinitionRecord:
        """Validate and store a definition.

        Without an explicit ``version`` the next free version for the name is used.

        Raises:
            DefinitionError: If the definition is invalid, has no name, or the
                (name, version) pair already exists.
        """

        graph = load_definition(definition_json)
        resolved_name = (name or graph.name or "").strip()
        if not resolved_name:
            raise DefinitionError("Workflow definition requires a name")

        with self._lock:
            records = self._load_unlocked()
            versions = [r.version for r in records if r.name == resolved_name]
            resolved_version = version if version is not None else max(versions, default=0) + 1
            if resolved_version in versions:
                raise DefinitionError(
                    f"Workflow '{resolved_name}' version {resolved_version} already exists"
                )

            now = utc_iso_now()
            if is_active:
                records = [self._deactivated(r, resolved_name, now) for r in records]

            record = WorkflowDefinitionRecord(
                workflow_id=uuid.uuid4().hex,
                name=resolved_name,
                version=resolved_version,
                description=description if description is not None else graph.description,
                is_active=is_active,
                definition_json=dict(definition_json),
                created_at=now,
                updated_at=now,
            )
            records.append(record)
            self._save_unlocked(records)

        logger.info(
            "Workflow definition registered",
            extra={
                "workflow_id": record.workflow_id,
                "workflow_name": record.name,
                "version": record.version,
                "is_active": record.is_active,
            },
        )
        return record

    @staticmethod
    def _deactivated(
        record: WorkflowDefinitionRecord, name: str, now: str
    ) -> WorkflowDefinitionRecord:
        if record.name != name or not record.is_active:
            return record
        return record.model_copy(update={"is_active": False, "updated_at": now})

    def get_by_id(self, workflow_id: str) -> WorkflowDefinitionRecord | None:
        with self._lock:
            for record in self._load_unlocked():
                if record.workflow_id == workflow_id:
                    return record
            return None

    def get_by_name_and_version(
        self, name: str, version: int | None = None
    ) -> WorkflowDefinitionRecord | None:
        """Resolve a definition by name.

        With a version, that exact version is returned whether or not it is
        active. Without one, the highest active version is returned.
        """

        with self._lock:
            candidates = [r for r in self._load_unlocked() if r.name == name]
        if version is not None:
            return next((r for r in candidates if r.version == version), None)
        active = [r for r in candidates if r.is_active]
        return max(active, key=lambda r: r.version, default=None)

    def list_versions(self, name: str) -> list[WorkflowDefinitionRecord]:
        return sorted((r for r in self.list() if r.name == name), key=lambda r: r.version)

    def activate(self, workflow_id: str) -> WorkflowDefinitionRecord:
        with self._lock:
            records = self._load_unlocked()
            target = next((r for r in records if r.workflow_id == workflow_id), None)
            if target is None:
                raise DefinitionError(f"Workflow definition {workflow_id} not found.")
            now = utc_iso_now()
            updated: list[WorkflowDefinitionRecord] = []
            for record in records:
                if record.workflow_id == workflow_id:
                    record = record.model_copy(update={"is_active": True, "updated_at": now})
                    target = record
                else:
                    record = self._deactivated(record, target.name, now)
                updated.append(record)
            self._save_unlocked(updated)

        logger.info(
            "Workflow definition activated",
            extra={"workflow_id": workflow_id, "workflow_name": target.name, "version": target.version},
        )
        return target
