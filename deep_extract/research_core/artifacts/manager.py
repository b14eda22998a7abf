from __future__ import annotations

import json
import re
import uuid
from pathlib import Path
from typing import Any

from loguru import logger

from deep_extract.models.interfaces import Artifact
from deep_extract.services.repositories import ArtifactRepository

ARTIFACT_DIRECTORIES = (
    "raw-html",
    "rendered",
    "screenshots",
    "network",
    "evidence",
    "markdown",
    "markdown/local",
    "markdown/remote",
    "markdown/canonical",
    "markdown/meta",
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_file_name(name: str | None, *, fallback: str = "artifact") -> str:
    cleaned = _UNSAFE_CHARS.sub("-", str(name or fallback)).strip("-")[:120]
    return cleaned or fallback


class ArtifactManager:
    """Per-job registry of persisted byte streams.

    Every file the pipeline writes lands under ``root`` in one of the
    ``ARTIFACT_DIRECTORIES`` and is returned as an immutable ``Artifact``
    whose ``path`` is relative to ``root``. Write errors are not caught here.
    """

    def __init__(self, *, job_id: str, root: str | Path, repo: ArtifactRepository | None = None):
        self.job_id = job_id
        self.root = Path(root).resolve()
        self.repo = repo
        self._items: list[Artifact] = []
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        for directory in ARTIFACT_DIRECTORIES:
            (self.root / directory).mkdir(parents=True, exist_ok=True)

    def path_for(self, directory: str, file_name: str) -> Path:
        return self.root / directory / sanitize_file_name(file_name)

    def write_text(
        self,
        *,
        type: str,
        directory: str,
        file_name: str,
        content: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> Artifact:
        abs_path = self.path_for(directory, file_name)
        abs_path.write_text(str(content or ""), encoding="utf-8")
        return self.register(type=type, abs_path=abs_path, metadata=metadata)

    def write_json(
        self,
        *,
        type: str,
        directory: str,
        file_name: str,
        data: Any,
        metadata: dict[str, Any] | None = None,
    ) -> Artifact:
        return self.write_text(
            type=type,
            directory=directory,
            file_name=file_name,
            content=json.dumps(data, ensure_ascii=False, indent=2, default=str),
            metadata={**(metadata or {}), "format": "json"},
        )

    def register(
        self,
        *,
        type: str,
        abs_path: str | Path,
        metadata: dict[str, Any] | None = None,
    ) -> Artifact:
        abs_path = Path(abs_path).resolve()
        artifact = Artifact(
            id=str(uuid.uuid4()),
            type=type,
            path=abs_path.relative_to(self.root).as_posix(),
            metadata=dict(metadata or {}),
        )
        self._items.append(artifact)
        logger.debug(f"Artifact registered: {artifact.type} -> {artifact.path}")

        if self.repo is not None:
            self.repo.create(
                {
                    "id": artifact.id,
                    "jobId": self.job_id,
                    "type": artifact.type,
                    "path": str(abs_path),
                    "metadata": dict(artifact.metadata),
                }
            )
        return artifact

    def list(self) -> list[Artifact]:
        return list(self._items)

    def absolute_path(self, artifact: Artifact) -> Path:
        return self.root / artifact.path

    def read_text(self, artifact: Artifact) -> str:
        """Artifact contents, or an empty string when the file is unreadable."""
        try:
            return self.absolute_path(artifact).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return ""
