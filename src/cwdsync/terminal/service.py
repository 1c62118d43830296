"""Session lifecycle and the directory-change pipeline for embedded terminals."""

from __future__ import annotations

import asyncio
import logging as py_logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass

from cwdsync.config import AppConfig
from cwdsync.errors import CwdSyncError, ExitCode
from cwdsync.repo.context import ContextResolver
from cwdsync.repo.git_resolver import GitContextResolver
from cwdsync.repo.slots import RepoSlot, RepoSlotStore
from cwdsync.sync.reconciler import ContextReconciler, ReconcileOutcome
from cwdsync.terminal.hooks import InputWriter, ShellHookInjector
from cwdsync.terminal.markers import CwdMarkerDetector, OscDispatcher, strip_markers
from cwdsync.terminal.models import (
    DirectoryChange,
    Platform,
    Session,
    ShellKind,
    detect_platform,
    shell_kind_for,
)
from cwdsync.terminal.pty_backend import PtyBackend

logger = py_logging.getLogger(__name__)

OutputSink = Callable[[str], None]
TitleListener = Callable[[str, str], None]


@dataclass(frozen=True)
class SyncEvent:
    session_id: str
    step: str
    message: str


class SyncService:
    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        resolver: ContextResolver | None = None,
        store: RepoSlotStore | None = None,
        pty_backend: PtyBackend | None = None,
        writer: InputWriter | None = None,
        on_title: TitleListener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or RepoSlotStore()
        self._pty_backend = pty_backend
        self._writer = writer or (pty_backend.write if pty_backend is not None else _no_input_channel)
        self._on_title = on_title
        self._sessions: dict[str, Session] = {}
        self._events: list[SyncEvent] = []
        self._queue: asyncio.Queue[DirectoryChange] = asyncio.Queue()
        self._tasks: set[asyncio.Task[ReconcileOutcome]] = set()
        self.detector = CwdMarkerDetector(
            self._queue.put_nowait,
            dedupe_window_seconds=self.config.dedupe_window_seconds,
            clock=clock,
        )
        self.injector = ShellHookInjector(self._writer)
        self.reconciler = ContextReconciler(
            resolver or GitContextResolver(),
            self.store,
            on_title=self._title_changed,
            default_title=self.config.default_title,
        )

    def list_sessions(self) -> list[Session]:
        return [self._sessions[key] for key in sorted(self._sessions)]

    def get_session(self, session_id: str) -> Session:
        return self._must_get(session_id)

    def list_events(self) -> list[SyncEvent]:
        return list(self._events)

    def open_session(
        self,
        session_id: str,
        *,
        platform: Platform | None = None,
        shell: ShellKind | None = None,
    ) -> Session:
        if session_id in self._sessions:
            raise CwdSyncError(
                f"Session already exists: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use a unique terminal id.",
                session_id=session_id,
            )
        resolved_platform = platform or self._default_platform()
        resolved_shell = shell or self._default_shell(resolved_platform)
        session = Session(session_id=session_id, platform=resolved_platform, shell=resolved_shell)
        self._sessions[session_id] = session
        self._record(session_id, "open", f"Opened {resolved_platform.value} session ({resolved_shell.value}).")
        return session

    def start(self, session_id: str) -> Session:
        """Attach the PTY (when one is managed here), install the hook and probe once."""
        session = self._must_get(session_id)
        backend = self._pty_backend
        if backend is not None and not backend.is_running(session_id):
            try:
                handle = backend.start(session_id, cols=self.config.cols, rows=self.config.rows)
            except CwdSyncError as exc:
                session.instrumentation_aborted = True
                logger.error("PTY spawn failed session=%s error=%s", session_id, exc)
                self._record(session_id, "spawn-failed", exc.message)
                return session
            session.shell = handle.shell
            self._record(session_id, "spawn", f"Spawned {' '.join(handle.command)}.")
        self.injector.install(session)
        self.injector.probe(session)
        if session.instrumentation_aborted:
            self._record(session_id, "instrument-failed", "Shell instrumentation aborted.")
        else:
            self._record(session_id, "instrument", "Shell hook installed and probed.")
        return session

    def feed(self, session_id: str, chunk: str) -> str:
        """Passive path: scan an output chunk; returns it with complete markers removed."""
        session = self._sessions.get(session_id)
        if session is not None and session.alive:
            self.detector.feed(session, chunk)
        return strip_markers(chunk)

    def handle_osc(self, session_id: str, code: int, payload: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None or not session.alive:
            return False
        return self.detector.handle_osc(session, code, payload)

    def attach_dispatcher(self, session_id: str, dispatcher: OscDispatcher) -> list[object]:
        return self.detector.attach(self._must_get(session_id), dispatcher)

    async def run(self) -> None:
        """Consume directory changes forever, one concurrent reconcile per change."""
        while True:
            change = await self._queue.get()
            try:
                self._dispatch(change)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Dispatch queued changes and wait for every in-flight reconcile."""
        while True:
            while not self._queue.empty():
                change = self._queue.get_nowait()
                try:
                    self._dispatch(change)
                finally:
                    self._queue.task_done()
            if not self._tasks:
                return
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def pump(self, session_id: str, on_output: OutputSink) -> None:
        """Read the managed PTY until the shell exits, feeding every chunk."""
        backend = self._pty_backend
        if backend is None:
            raise CwdSyncError(
                "No PTY backend configured.",
                code=ExitCode.RUNTIME_ERROR,
                hint="Construct SyncService with a PtyBackend to pump output.",
            )
        session = self._must_get(session_id)
        while session.alive:
            try:
                chunk = await asyncio.to_thread(backend.read, session_id)
            except EOFError:
                self._record(session_id, "eof", "Shell exited.")
                break
            except CwdSyncError as exc:
                logger.error("PTY read failed session=%s error=%s", session_id, exc)
                self._record(session_id, "read-failed", exc.message)
                break
            if not chunk:
                await asyncio.sleep(0.01)
                continue
            text = self.feed(session_id, chunk)
            if text:
                on_output(text)

    def write_input(self, session_id: str, data: str) -> None:
        self._must_get(session_id)
        self._writer(session_id, data)

    def hydrate_slot(self, label: str = "") -> RepoSlot:
        return self.store.hydrate(label, default_label=self.config.initial_slot_label)

    def new_slot(self, session_id: str) -> RepoSlot:
        """Open an empty slot and send the shell back to the home directory."""
        session = self._must_get(session_id)
        slot = self.store.open_slot()
        line_ending = self.injector.strategy_for(session).line_ending
        try:
            self._writer(session_id, self.config.home_command + line_ending)
        except (CwdSyncError, OSError) as exc:
            logger.warning("Failed to reset terminal to home session=%s error=%s", session_id, exc)
        self._record(session_id, "slot-open", "Opened new slot.")
        return slot

    def activate_slot(self, slot: RepoSlot) -> None:
        self.store.set_active(slot)

    def close_slot(self, slot: RepoSlot) -> RepoSlot | None:
        return self.store.close(slot)

    def close_session(self, session_id: str) -> None:
        session = self._must_get(session_id)
        session.closed = True
        self.detector.forget(session_id)
        self.injector.forget(session_id)
        backend = self._pty_backend
        if backend is not None and backend.is_running(session_id):
            try:
                backend.stop(session_id)
            except CwdSyncError as exc:
                logger.warning("PTY stop failed session=%s error=%s", session_id, exc)
        del self._sessions[session_id]
        self._record(session_id, "close", "Session closed.")

    def _dispatch(self, change: DirectoryChange) -> None:
        session = self._sessions.get(change.session_id)
        if session is None or not session.alive:
            return
        logger.debug(
            "Directory change session=%s path=%s source=%s",
            change.session_id,
            change.path,
            change.source.value,
        )
        task = asyncio.create_task(self.reconciler.reconcile(session, change.path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _title_changed(self, session_id: str, title: str) -> None:
        self._record(session_id, "title", title)
        if self._on_title is not None:
            self._on_title(session_id, title)

    def _default_platform(self) -> Platform:
        if self._pty_backend is not None:
            return self._pty_backend.platform
        return detect_platform()

    def _default_shell(self, platform: Platform) -> ShellKind:
        if platform == Platform.WINDOWS:
            return ShellKind.POWERSHELL
        return shell_kind_for(self.config.shell or os.environ.get("SHELL", ""), platform)

    def _must_get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise CwdSyncError(
                f"Session not found: {session_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Open the terminal session first.",
                session_id=session_id,
            )
        return session

    def _record(self, session_id: str, step: str, message: str) -> None:
        self._events.append(SyncEvent(session_id=session_id, step=step, message=message))
        logger.info("sync-event session=%s step=%s message=%s", session_id, step, message)


def _no_input_channel(session_id: str, _payload: str) -> None:
    raise CwdSyncError(
        f"No input channel for terminal {session_id}.",
        code=ExitCode.RUNTIME_ERROR,
        hint="Provide a PtyBackend or an input writer.",
        session_id=session_id,
    )
