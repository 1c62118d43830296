"""Turn reported directories into repository context on the active slot."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from cwdsync.repo.context import ContextResolver, RepositoryContext
from cwdsync.repo.slots import RepoSlotStore

if TYPE_CHECKING:
    from cwdsync.terminal.models import Session

logger = py_logging.getLogger(__name__)

DEFAULT_TITLE = "Terminal"

TitleSink = Callable[[str, str], None]


class ReconcileState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"


class ReconcileOutcome(str, Enum):
    RESOLVED = "resolved"
    REFRESHED = "refreshed"
    CLEARED = "cleared"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    STALE = "stale"


class ContextReconciler:
    """Resolve directories concurrently; only the newest request per session may apply.

    Every directory change takes a token from its session. A resolution whose
    token has been superseded by the time it completes, or whose session has
    been closed, is dropped without touching any state.
    """

    def __init__(
        self,
        resolver: ContextResolver,
        store: RepoSlotStore,
        *,
        on_title: TitleSink | None = None,
        default_title: str = DEFAULT_TITLE,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._on_title = on_title
        self.default_title = default_title
        self._in_flight: dict[str, int] = {}

    def state(self, session_id: str) -> ReconcileState:
        if self._in_flight.get(session_id, 0) > 0:
            return ReconcileState.RESOLVING
        return ReconcileState.IDLE

    async def reconcile(self, session: Session, path: str) -> ReconcileOutcome:
        token = session.issue_token()
        session_id = session.session_id
        self._in_flight[session_id] = self._in_flight.get(session_id, 0) + 1
        try:
            return await self._reconcile(session, path, token)
        finally:
            remaining = self._in_flight.get(session_id, 1) - 1
            if remaining > 0:
                self._in_flight[session_id] = remaining
            else:
                self._in_flight.pop(session_id, None)

    async def _reconcile(self, session: Session, path: str, token: int) -> ReconcileOutcome:
        session_id = session.session_id
        try:
            context = await self._resolver.resolve_context(path)
        except Exception as exc:
            logger.warning(
                "Context resolution failed session=%s path=%s error=%s", session_id, path, exc
            )
            return ReconcileOutcome.FAILED

        if self._is_stale(session, token):
            logger.debug("Discarded stale resolution session=%s path=%s", session_id, path)
            return ReconcileOutcome.STALE

        if context is None:
            return self._clear(session)

        enriched = await self._enrich(context)
        if self._is_stale(session, token):
            logger.debug("Discarded stale resolution session=%s path=%s", session_id, path)
            return ReconcileOutcome.STALE

        root_changed = enriched.root != session.last_resolved_root
        self._store.apply_context(enriched, relabel=root_changed)
        if not root_changed:
            return ReconcileOutcome.REFRESHED

        session.last_resolved_root = enriched.root
        logger.info(
            "Repository context session=%s root=%s branch=%s",
            session_id,
            enriched.root,
            enriched.active_branch,
        )
        self._emit_title(session_id, enriched.name)
        return ReconcileOutcome.RESOLVED

    async def _enrich(self, context: RepositoryContext) -> RepositoryContext:
        branches_result, current_result = await asyncio.gather(
            self._resolver.list_branches(context.root),
            self._resolver.current_branch(context.root),
            return_exceptions=True,
        )
        branches: list[str] = []
        if isinstance(branches_result, BaseException):
            logger.warning("Branch listing failed root=%s error=%s", context.root, branches_result)
        else:
            branches = list(branches_result)
        active_branch = ""
        if isinstance(current_result, BaseException):
            logger.warning("Current branch lookup failed root=%s error=%s", context.root, current_result)
        else:
            active_branch = str(current_result or "").strip()
        return context.with_branches(branches, active_branch)

    def _clear(self, session: Session) -> ReconcileOutcome:
        if session.last_resolved_root is None:
            return ReconcileOutcome.UNCHANGED
        logger.info("Left repository session=%s root=%s", session.session_id, session.last_resolved_root)
        session.last_resolved_root = None
        self._store.clear_context(self.default_title)
        self._emit_title(session.session_id, self.default_title)
        return ReconcileOutcome.CLEARED

    def _emit_title(self, session_id: str, title: str) -> None:
        if self._on_title is not None:
            self._on_title(session_id, title)

    @staticmethod
    def _is_stale(session: Session, token: int) -> bool:
        return not session.alive or not session.is_current(token)
