"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import codecs
import json
import logging as py_logging
import os
import sys
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

from .config import AppConfig, load_config
from .errors import CwdSyncError, ExitCode, user_facing_error
from .logging import configure_logging, default_log_path
from .repo.git_resolver import GitContextResolver
from .terminal.hooks import select_strategy
from .terminal.models import Platform, detect_platform, shell_kind_for
from .terminal.pty_backend import PtyBackend
from .terminal.service import SyncService

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_VALID_PLATFORMS = tuple(item.value for item in Platform)
_WATCH_SESSION_ID = "main"


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cwdsync")
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument("--config", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    script = commands.add_parser("script", help="Print the shell instrumentation payload")
    script.add_argument("--platform", choices=_VALID_PLATFORMS, default=None)
    script.add_argument("--shell", default="")
    script.add_argument("--probe", action="store_true", help="Print the one-shot probe instead")

    resolve = commands.add_parser("resolve", help="Print repository context for a directory")
    resolve.add_argument("path", type=Path)

    commands.add_parser("watch", help="Run a shell and log repository context changes")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def render_script(platform: Platform, shell: str, *, probe: bool = False) -> str:
    strategy = select_strategy(platform, shell_kind_for(shell, platform))
    return strategy.render_probe() if probe else strategy.render_install()


def run_script(namespace: argparse.Namespace, config: AppConfig) -> int:
    platform = Platform(namespace.platform) if namespace.platform else detect_platform()
    shell = namespace.shell or config.shell
    sys.stdout.write(render_script(platform, shell, probe=namespace.probe))
    return int(ExitCode.SUCCESS)


def run_resolve(namespace: argparse.Namespace, resolver: GitContextResolver | None = None) -> int:
    path = namespace.path.expanduser()
    if not path.is_dir():
        raise CwdSyncError(
            f"Not a directory: {path}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Pass an existing directory.",
        )
    git = resolver or GitContextResolver()
    context = git.resolve_context_sync(str(path))
    if context is None:
        print("null")
        return int(ExitCode.SUCCESS)
    context = context.with_branches(
        git.list_branches_sync(context.root),
        git.current_branch_sync(context.root),
    )
    print(json.dumps(context.to_payload(), indent=2))
    return int(ExitCode.SUCCESS)


@contextmanager
def _raw_stdin(stream: TextIO) -> Iterator[bool]:
    """Put a terminal stdin in raw mode so the embedded shell owns echo and line editing."""
    if sys.platform == "win32" or not stream.isatty():
        yield False
        return
    import termios
    import tty

    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    tty.setraw(fd)
    try:
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


def _raw_chunks(stream: TextIO, size: int = 1024) -> Iterator[str]:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    fd = stream.fileno()
    while True:
        data = os.read(fd, size)
        if not data:
            return
        text = decoder.decode(data)
        if text:
            yield text


async def _watch(service: SyncService) -> int:
    logger = py_logging.getLogger(__name__)
    service.hydrate_slot()
    session = service.open_session(_WATCH_SESSION_ID)
    service.start(_WATCH_SESSION_ID)
    spawn_failed = any(
        event.session_id == _WATCH_SESSION_ID and event.step == "spawn-failed"
        for event in service.list_events()
    )
    if spawn_failed:
        raise CwdSyncError(
            "Failed to start the shell.",
            code=ExitCode.SHELL_ERROR,
            hint="Check the configured shell or $SHELL.",
            session_id=_WATCH_SESSION_ID,
        )
    if session.instrumentation_aborted:
        logger.warning("Shell started without cwd hooks session=%s", _WATCH_SESSION_ID)

    def forward_stdin(raw: bool) -> None:
        chunks = _raw_chunks(sys.stdin) if raw else sys.stdin
        for text in chunks:
            try:
                service.write_input(_WATCH_SESSION_ID, text)
            except CwdSyncError as exc:
                logger.warning("Input forwarding stopped: %s", exc.message)
                return

    def write_output(text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    consumer = asyncio.create_task(service.run())
    with _raw_stdin(sys.stdin) as raw:
        threading.Thread(
            target=forward_stdin, args=(raw,), name="cwdsync-stdin", daemon=True
        ).start()
        try:
            await service.pump(_WATCH_SESSION_ID, write_output)
            await service.drain()
        finally:
            consumer.cancel()
            service.close_session(_WATCH_SESSION_ID)
    return int(ExitCode.SUCCESS)


def run_watch(config: AppConfig) -> int:
    logger = py_logging.getLogger(__name__)

    def on_title(session_id: str, title: str) -> None:
        logger.info("title session=%s title=%s", session_id, title)

    backend = PtyBackend(shell_path=config.shell)
    service = SyncService(config=config, pty_backend=backend, on_title=on_title)
    return asyncio.run(_watch(service))


def run_command(namespace: argparse.Namespace, config: AppConfig) -> int:
    if namespace.command == "script":
        return run_script(namespace, config)
    if namespace.command == "resolve":
        return run_resolve(namespace)
    if namespace.command == "watch":
        return run_watch(config)
    raise CwdSyncError(
        f"Unknown command: {namespace.command}",
        code=ExitCode.INVALID_ARGS,
        hint="Run cwdsync --help.",
    )


def main(argv: Sequence[str] | None = None) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = namespace.log_level or config.log_level
    logger = configure_logging(level=level, log_file=log_path)

    try:
        logger.debug("Starting command %s", namespace.command)
        return run_command(namespace, config)
    except CwdSyncError as exc:
        logger.error(
            "Handled CwdSyncError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=level == "DEBUG",
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except KeyboardInterrupt:
        return int(ExitCode.SUCCESS)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(
            user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"),
            file=sys.stderr,
        )
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
