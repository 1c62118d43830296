"""Terminal session and directory-marker domain models."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath


class Platform(str, Enum):
    POSIX = "posix"
    WINDOWS = "windows"


class ShellKind(str, Enum):
    ZSH = "zsh"
    BASH = "bash"
    SH = "sh"
    PWSH = "pwsh"
    POWERSHELL = "powershell"
    CMD = "cmd"


class MarkerKind(str, Enum):
    LEGACY_CWD = "legacy_cwd"
    FILE_URI = "file_uri"


class MarkerSource(str, Enum):
    PASSIVE = "passive"
    DISPATCH = "dispatch"


_SHELL_NAMES = {
    "zsh": ShellKind.ZSH,
    "bash": ShellKind.BASH,
    "pwsh": ShellKind.PWSH,
    "powershell": ShellKind.POWERSHELL,
    "cmd": ShellKind.CMD,
}


def detect_platform() -> Platform:
    if sys.platform.startswith("win") or os.name == "nt":
        return Platform.WINDOWS
    return Platform.POSIX


def shell_kind_for(executable: str, platform: Platform = Platform.POSIX) -> ShellKind:
    """Map a shell executable path or name onto a known shell family."""
    value = executable.strip()
    if not value:
        return ShellKind.POWERSHELL if platform == Platform.WINDOWS else ShellKind.SH
    name = PurePath(value.replace("\\", "/")).name.lower()
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    if name in _SHELL_NAMES:
        return _SHELL_NAMES[name]
    return ShellKind.POWERSHELL if platform == Platform.WINDOWS else ShellKind.SH


@dataclass(frozen=True)
class DirectoryMarker:
    path: str
    kind: MarkerKind
    host: str = ""
    # File-URI path as printed, before percent-decoding.
    raw_path: str = ""


@dataclass(frozen=True)
class DirectoryChange:
    session_id: str
    path: str
    marker: DirectoryMarker
    source: MarkerSource
    observed_at: float


@dataclass
class Session:
    """One terminal/shell instance, owned by the terminal view lifecycle."""

    session_id: str
    platform: Platform = Platform.POSIX
    shell: ShellKind = ShellKind.SH
    hook_installed: bool = False
    last_resolved_root: str | None = None
    instrumentation_aborted: bool = False
    closed: bool = False
    _latest_token: int = field(default=0, repr=False)

    @property
    def alive(self) -> bool:
        return not self.closed

    def issue_token(self) -> int:
        self._latest_token += 1
        return self._latest_token

    def is_current(self, token: int) -> bool:
        return token == self._latest_token
