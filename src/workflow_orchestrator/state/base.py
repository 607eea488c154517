"""Shared plumbing for the JSON-file record stores.

Each store keeps one JSON array on disk and rewrites it whole on every change.
A lock per store instance serializes access within a process.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from workflow_orchestrator.orchestrator.workflow.errors import StateError

RecordT = TypeVar("RecordT", bound=BaseModel)


def utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class JsonRecordStore(Generic[RecordT]):
    path: Path

    record_type: ClassVar[type[BaseModel]]

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._lock = threading.RLock()

    def _load_unlocked(self) -> list[RecordT]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateError(f"State file {self.path} is not valid JSON: {e}") from e
        if not isinstance(raw, list):
            raise StateError(f"State file {self.path} must contain a JSON array")
        try:
            return [self.record_type.model_validate(item) for item in raw]  # type: ignore[misc]
        except ValidationError as e:
            raise StateError(f"State file {self.path} contains an invalid record: {e}") from e

    def _save_unlocked(self, records: list[RecordT]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def list(self) -> list[RecordT]:
        with self._lock:
            return self._load_unlocked()
