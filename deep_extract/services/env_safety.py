from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

KEYLOG_ENV = "SSLKEYLOGFILE"


def _drop_keylog(reason: str) -> bool:
    os.environ.pop(KEYLOG_ENV, None)
    logger.debug(f"{KEYLOG_ENV} unset: {reason}")
    return True


def sanitize_ssl_keylogfile() -> bool:
    """Unset SSLKEYLOGFILE when it points to an unusable path.

    Provider, solver and conversion clients all build TLS contexts; an
    inaccessible keylog path makes that step crash before any request is sent.
    Returns ``True`` when the variable was removed.
    """
    keylog_path = os.getenv(KEYLOG_ENV, "").strip()
    if not keylog_path:
        return False

    path = Path(keylog_path)
    if not path.parent.exists():
        return _drop_keylog(f"directory of {keylog_path} does not exist")

    try:
        # Append mode leaves existing key logs intact
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError as exc:
        return _drop_keylog(f"{keylog_path} is not writable ({exc.__class__.__name__})")
    return False
