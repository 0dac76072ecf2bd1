from __future__ import annotations

import os
from pathlib import Path

CA_BUNDLE_VARS = ("SSL_CERT_FILE", "REQUESTS_CA_BUNDLE", "CURL_CA_BUNDLE")

_checked = False


def _keylog_path_usable(raw: str) -> bool:
    path = Path(raw)
    if not path.parent.exists():
        return False
    try:
        # Append mode keeps existing key logs intact.
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError:
        return False
    return True


def sanitize_tls_environment(*, force: bool = False) -> list[str]:
    """Drop TLS-related environment variables that point at unusable files.

    httpx, openai and supabase all build SSL contexts from these variables and
    fail hard when the referenced file is missing. Returns the names removed.
    """
    global _checked
    if _checked and not force:
        return []

    removed: list[str] = []
    keylog = os.getenv("SSLKEYLOGFILE", "").strip()
    if keylog and not _keylog_path_usable(keylog):
        os.environ.pop("SSLKEYLOGFILE", None)
        removed.append("SSLKEYLOGFILE")

    for name in CA_BUNDLE_VARS:
        value = os.getenv(name, "").strip()
        if value and not Path(value).is_file():
            os.environ.pop(name, None)
            removed.append(name)

    _checked = True
    return removed
