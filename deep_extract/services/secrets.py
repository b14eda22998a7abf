from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Protocol

from loguru import logger


class SecretStore(Protocol):
    """Read-only lookup of credentials by reference.

    Values are either a bare string (API key) or a mapping such as
    ``{"apiKey": ...}``, ``{"username": ..., "password": ...}`` or
    ``{"cookies": [...]}``. Unknown refs return ``None``.
    """

    def get(self, ref: str) -> Any: ...


class MappingSecretStore:
    """In-memory secret store backed by a plain mapping."""

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values = dict(values or {})

    @classmethod
    def from_json_file(cls, path: str | Path) -> "MappingSecretStore":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Secrets file must contain a JSON object: {path}")
        logger.debug(f"Loaded {len(payload)} secret refs from {path}")
        return cls(payload)

    def get(self, ref: str) -> Any:
        if not ref:
            return None
        return self._values.get(ref)


def read_secret(store: SecretStore | None, ref: str | None) -> Any:
    if store is None or not ref:
        return None
    return store.get(ref)


def to_api_key(value: Any) -> str | None:
    """Pull an API key out of a secret value (string, ``apiKey`` or ``key``)."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for name in ("apiKey", "key"):
            candidate = value.get(name)
            if isinstance(candidate, str):
                return candidate
    return None
