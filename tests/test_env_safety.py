from __future__ import annotations

import os
from unittest.mock import patch

from contact_finder.services.env_safety import sanitize_tls_environment


def test_sanitize_unsets_unwritable_keylog_file():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": "/does-not-exist/virtual_file.log"}, clear=False):
        removed = sanitize_tls_environment(force=True)
        assert "SSLKEYLOGFILE" in removed
        assert "SSLKEYLOGFILE" not in os.environ


def test_sanitize_keeps_usable_keylog_file(tmp_path):
    keylog = tmp_path / "keylog.log"
    with patch.dict(os.environ, {"SSLKEYLOGFILE": str(keylog)}, clear=False):
        sanitize_tls_environment(force=True)
        assert os.environ.get("SSLKEYLOGFILE") == str(keylog)


def test_sanitize_drops_missing_ca_bundle_only(tmp_path):
    bundle = tmp_path / "ca.pem"
    bundle.write_text("certs", encoding="utf-8")
    env = {"SSL_CERT_FILE": str(tmp_path / "missing.pem"), "REQUESTS_CA_BUNDLE": str(bundle)}
    with patch.dict(os.environ, env, clear=False):
        removed = sanitize_tls_environment(force=True)
        assert removed == ["SSL_CERT_FILE"]
        assert os.environ["REQUESTS_CA_BUNDLE"] == str(bundle)


def test_sanitize_runs_once_unless_forced():
    sanitize_tls_environment(force=True)
    with patch.dict(os.environ, {"SSLKEYLOGFILE": "/does-not-exist/again.log"}, clear=False):
        assert sanitize_tls_environment() == []
        assert "SSLKEYLOGFILE" in os.environ
