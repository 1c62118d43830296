"""Embedded terminal sessions and working-directory markers."""

from .hooks import ShellHookInjector, select_strategy
from .markers import CwdMarkerDetector, scan, strip_markers
from .models import (
    DirectoryChange,
    DirectoryMarker,
    MarkerKind,
    MarkerSource,
    Platform,
    Session,
    ShellKind,
)
from .paths import normalize_path
from .pty_backend import PtyBackend, PtyHandle, build_shell_command, shell_candidates
from .service import SyncEvent, SyncService

__all__ = [
    "build_shell_command",
    "CwdMarkerDetector",
    "DirectoryChange",
    "DirectoryMarker",
    "MarkerKind",
    "MarkerSource",
    "normalize_path",
    "Platform",
    "PtyBackend",
    "PtyHandle",
    "scan",
    "select_strategy",
    "Session",
    "ShellHookInjector",
    "ShellKind",
    "shell_candidates",
    "strip_markers",
    "SyncEvent",
    "SyncService",
]
