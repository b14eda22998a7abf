from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from deep_extract.services.env_safety import sanitize_ssl_keylogfile


def test_unwritable_keylog_path_is_unset():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": r"Z:\does-not-exist\virtual_file.log"}, clear=False):
        with patch("pathlib.Path.exists", return_value=True):
            with patch("builtins.open", side_effect=PermissionError):
                assert sanitize_ssl_keylogfile() is True
        assert "SSLKEYLOGFILE" not in os.environ


def test_missing_directory_is_unset(tmp_path: Path):
    target = tmp_path / "missing" / "keylog.log"
    with patch.dict(os.environ, {"SSLKEYLOGFILE": str(target)}, clear=False):
        assert sanitize_ssl_keylogfile() is True
        assert "SSLKEYLOGFILE" not in os.environ


def test_usable_keylog_path_is_kept(tmp_path: Path):
    target = tmp_path / "keylog.log"
    target.write_text("existing", encoding="utf-8")
    with patch.dict(os.environ, {"SSLKEYLOGFILE": str(target)}, clear=False):
        assert sanitize_ssl_keylogfile() is False
        assert os.environ.get("SSLKEYLOGFILE") == str(target)
    assert target.read_text(encoding="utf-8") == "existing"


def test_noop_when_unset():
    with patch.dict(os.environ, {}, clear=True):
        assert sanitize_ssl_keylogfile() is False
        assert "SSLKEYLOGFILE" not in os.environ
