"""PTY lifecycle for embedded shells (pywinpty on Windows, ptyprocess elsewhere)."""

from __future__ import annotations

import atexit
import logging as py_logging
import os
import subprocess
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass

from cwdsync.errors import CwdSyncError, ExitCode
from cwdsync.terminal.models import Platform, ShellKind, detect_platform, shell_kind_for

logger = py_logging.getLogger(__name__)

DEFAULT_POSIX_SHELL = "/bin/zsh"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
TERM_NAME = "xterm-256color"


@dataclass(frozen=True)
class PtyHandle:
    session_id: str
    platform: Platform
    command: tuple[str, ...]
    shell: ShellKind


PtySpawn = Callable[[list[str], str | None, dict[str, str], tuple[int, int]], object]


def shell_candidates(platform: Platform, shell_path: str = "") -> list[list[str]]:
    """Return the shell commands to try, in order, for a new PTY."""
    if platform == Platform.WINDOWS:
        return [
            ["pwsh.exe", "-NoLogo", "-NoProfile"],
            ["powershell.exe", "-NoLogo", "-NoProfile"],
            ["cmd.exe", "/d", "/k"],
        ]
    if platform == Platform.POSIX:
        shell = shell_path.strip() or os.environ.get("SHELL", "").strip() or DEFAULT_POSIX_SHELL
        # Interactive mode so precmd / PROMPT_COMMAND hooks actually run.
        kind = shell_kind_for(shell)
        if kind == ShellKind.ZSH:
            return [[shell, "-i", "-o", "histignorespace"]]
        if kind == ShellKind.BASH:
            return [[shell, "-i"]]
        return [[shell]]
    raise CwdSyncError(
        f"Unsupported platform: {platform}",
        code=ExitCode.UNSUPPORTED_PLATFORM,
        hint="Use posix or windows.",
    )


def with_ignorespace(histcontrol: str) -> str:
    """Make bash skip space-prefixed lines such as the hook install commands."""
    values = [value for value in histcontrol.split(":") if value]
    if "ignorespace" in values or "ignoreboth" in values:
        return histcontrol
    return ":".join(["ignorespace", *values])


def build_shell_command(platform: Platform, shell_path: str = "") -> list[str]:
    return shell_candidates(platform, shell_path)[0]


def _spawn_with_winpty(
    command: list[str], cwd: str | None, env: dict[str, str], dimensions: tuple[int, int]
) -> object:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise CwdSyncError(
            "pywinpty backend is unavailable.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Install pywinpty on Windows.",
        ) from exc
    return PtyProcess.spawn(
        subprocess.list2cmdline(command), cwd=cwd, env=env, dimensions=dimensions
    )


def _spawn_with_ptyprocess(
    command: list[str], cwd: str | None, env: dict[str, str], dimensions: tuple[int, int]
) -> object:
    try:
        from ptyprocess import PtyProcessUnicode
    except Exception as exc:
        raise CwdSyncError(
            "ptyprocess backend is unavailable.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Install ptyprocess.",
        ) from exc
    return PtyProcessUnicode.spawn(command, cwd=cwd, env=env, dimensions=dimensions)


def default_spawn(platform: Platform) -> PtySpawn:
    if platform == Platform.WINDOWS:
        return _spawn_with_winpty
    return _spawn_with_ptyprocess


class PtyBackend:
    def __init__(
        self,
        spawn: PtySpawn | None = None,
        *,
        platform: Platform | None = None,
        shell_path: str = "",
    ) -> None:
        self.platform = platform or detect_platform()
        self.shell_path = shell_path
        self._spawn = spawn or default_spawn(self.platform)
        self._sessions: dict[str, object] = {}
        self._handles: dict[str, PtyHandle] = {}
        atexit.register(self.stop_all)

    def start(
        self,
        session_id: str,
        *,
        command: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> PtyHandle:
        if session_id in self._sessions:
            raise CwdSyncError(
                f"Terminal already started: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Stop the current PTY session before starting a new one.",
                session_id=session_id,
            )
        if cols <= 0 or rows <= 0:
            raise CwdSyncError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )

        candidates = [list(command)] if command else shell_candidates(self.platform, self.shell_path)
        merged_env = dict(os.environ if env is None else env)
        merged_env["TERM"] = TERM_NAME
        if self.platform == Platform.POSIX:
            merged_env["HISTCONTROL"] = with_ignorespace(merged_env.get("HISTCONTROL", ""))

        last_error = ""
        for candidate in candidates:
            if not candidate:
                last_error = "PTY command cannot be empty."
                continue
            try:
                process = self._spawn(candidate, cwd, merged_env, (rows, cols))
            except Exception as exc:
                last_error = f"{candidate[0]} failed: {exc}"
                logger.warning("PTY spawn attempt failed session=%s error=%s", session_id, last_error)
                continue
            handle = PtyHandle(
                session_id=session_id,
                platform=self.platform,
                command=tuple(candidate),
                shell=shell_kind_for(candidate[0], self.platform),
            )
            self._sessions[session_id] = process
            self._handles[session_id] = handle
            logger.info("PTY started session=%s command=%s", session_id, candidate[0])
            return handle

        raise CwdSyncError(
            "Failed to start PTY process.",
            code=ExitCode.SHELL_ERROR,
            hint=last_error or "Check shell installation.",
            session_id=session_id,
        )

    def write(self, session_id: str, payload: str) -> None:
        process = self._require_session(session_id)
        try:
            process.write(payload)
        except Exception as exc:
            raise CwdSyncError(
                f"Failed to write to terminal {session_id}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify terminal process health.",
                session_id=session_id,
            ) from exc

    def read(self, session_id: str, *, max_bytes: int = 8192) -> str:
        """Read one output chunk. Raises ``EOFError`` once the shell has exited."""
        process = self._require_session(session_id)
        chunk: object
        try:
            chunk = process.read(max_bytes)
        except EOFError:
            raise
        except TypeError:
            chunk = process.read()
        except Exception as exc:
            raise CwdSyncError(
                f"Failed to read from terminal {session_id}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify PTY stream state.",
                session_id=session_id,
            ) from exc

        if chunk is None:
            return ""
        if isinstance(chunk, bytes):
            return chunk.decode("utf-8", errors="replace")
        return str(chunk)

    def resize(self, session_id: str, *, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            raise CwdSyncError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        process = self._require_session(session_id)
        try:
            process.setwinsize(rows, cols)
        except Exception as exc:
            raise CwdSyncError(
                f"Failed to resize terminal {session_id}.",
                code=ExitCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify PTY backend supports resizing.",
                session_id=session_id,
            ) from exc

    def shell_for(self, session_id: str) -> ShellKind:
        handle = self._handles.get(session_id)
        if handle is None:
            raise CwdSyncError(
                f"Terminal not running: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Start terminal before querying its shell.",
                session_id=session_id,
            )
        return handle.shell

    def is_running(self, session_id: str) -> bool:
        return session_id in self._sessions

    def stop(self, session_id: str) -> None:
        process = self._sessions.pop(session_id, None)
        self._handles.pop(session_id, None)
        if process is None:
            raise CwdSyncError(
                f"Terminal not running: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Select an active terminal session.",
                session_id=session_id,
            )
        self._close_session(process)

    def stop_all(self) -> None:
        for session_id in list(self._sessions):
            process = self._sessions.pop(session_id, None)
            self._handles.pop(session_id, None)
            if process is None:
                continue
            self._close_session(process)

    def list_handles(self) -> list[PtyHandle]:
        return [self._handles[key] for key in sorted(self._handles)]

    def _require_session(self, session_id: str) -> object:
        process = self._sessions.get(session_id)
        if process is None:
            raise CwdSyncError(
                f"Terminal not running: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Start terminal before PTY I/O operations.",
                session_id=session_id,
            )
        return process

    def _close_session(self, process: object) -> None:
        alive = _is_alive(process)
        if hasattr(process, "close"):
            try:
                process.close()
            except TypeError:
                process.close(True)
            except Exception:
                logger.debug("PTY close raised; falling back to terminate", exc_info=True)
        if alive and _is_alive(process) and hasattr(process, "terminate"):
            with suppress(Exception):
                process.terminate(force=True)


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return True
    return True
