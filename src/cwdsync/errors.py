"""Error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    RUNTIME_ERROR = 4
    GIT_ERROR = 5
    SHELL_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8


@dataclass
class CwdSyncError(Exception):
    """Failure with an exit code, a next-step hint and, when known, the terminal session."""

    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""
    session_id: str = ""

    def __str__(self) -> str:
        text = f"[{self.session_id}] {self.message}" if self.session_id else self.message
        if self.hint:
            return f"{text} Hint: {self.hint}"
        return text


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
