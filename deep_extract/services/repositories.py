from __future__ import annotations

from typing import Any, Protocol


class ArtifactRepository(Protocol):
    """Durable store mirroring artifact registrations, keyed by artifact id."""

    def create(self, record: dict[str, Any]) -> Any: ...

    def get(self, artifact_id: str) -> dict[str, Any] | None: ...

    def list_by_job_id(self, job_id: str) -> list[dict[str, Any]]: ...


class InMemoryArtifactRepository:
    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    def create(self, record: dict[str, Any]) -> dict[str, Any]:
        stored = dict(record)
        self._records[stored["id"]] = stored
        return stored

    def get(self, artifact_id: str) -> dict[str, Any] | None:
        return self._records.get(artifact_id)

    def list_by_job_id(self, job_id: str) -> list[dict[str, Any]]:
        return [record for record in self._records.values() if record.get("jobId") == job_id]
