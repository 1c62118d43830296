"""Path canonicalization for directories reported by the shell."""

from __future__ import annotations

import re
from urllib.parse import unquote

from cwdsync.terminal.models import Platform

_URI_DRIVE_RE = re.compile(r"^/([A-Za-z]:)(?=/|$)")


def normalize_path(path: str, platform: Platform) -> str:
    """Rewrite ``/C:/...`` to ``C:/...`` on Windows; leave everything else alone."""
    if platform != Platform.WINDOWS:
        return path
    return _URI_DRIVE_RE.sub(r"\1", path, count=1)


def decode_file_uri_path(raw: str) -> str:
    # Some shells percent-encode the OSC 7 path, the hooks installed here do not.
    if "%" not in raw:
        return raw
    return unquote(raw, errors="replace")
