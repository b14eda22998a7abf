from __future__ import annotations

import re
from urllib.parse import urlparse

_UNSAFE_NAME = re.compile(r"[^a-zA-Z0-9._-]+")
_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(str(url or ""))
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_text(value: object) -> str:
    """Collapse whitespace runs and trim."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def host_of(url: str) -> str:
    """Lower-cased hostname without a leading ``www.``; empty when unparsable."""
    try:
        host = (urlparse(str(url or "")).hostname or "").lower().strip()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def is_own_domain(host: str, domain: str) -> bool:
    if not host or not domain:
        return False
    return host == domain or host.endswith(f".{domain}")


def slugify_url(url: str, *, max_length: int | None = None) -> str:
    """File-name friendly form of a URL (scheme dropped, unsafe runs become '-')."""
    slug = _UNSAFE_NAME.sub("-", _SCHEME.sub("", str(url or "")))
    if max_length is not None:
        slug = slug[:max_length]
    return slug


def first_string(values: list[object]) -> str | None:
    """First value that is a non-blank string, stripped."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def unique(values: list, *, limit: int | None = None) -> list:
    """Order-preserving de-duplication dropping falsy entries."""
    seen: set = set()
    out: list = []
    for value in values or []:
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    if limit is not None:
        return out[:limit]
    return out
