from __future__ import annotations

import asyncio

import pytest

from cwdsync.errors import CwdSyncError, ExitCode
from cwdsync.repo.context import RepositoryContext
from cwdsync.repo.slots import RepoSlotStore, SlotView
from cwdsync.sync import ContextReconciler, ReconcileOutcome, ReconcileState
from cwdsync.terminal.models import Session

REPO = RepositoryContext(root="/work/repo", name="repo")
OTHER = RepositoryContext(root="/work/other", name="other")


def _setup(resolver, *, label: str = "workspace"):
    titles: list[tuple[str, str]] = []
    views: list[SlotView] = []
    store = RepoSlotStore(renderer=views.append)
    store.hydrate(label)
    reconciler = ContextReconciler(resolver, store, on_title=lambda sid, title: titles.append((sid, title)))
    return reconciler, store, titles, views


@pytest.mark.asyncio
async def test_moving_within_a_repository_does_not_retitle(make_resolver) -> None:
    resolver = make_resolver(
        {"/work/repo": REPO, "/work/repo/src": REPO},
        branches={"/work/repo": ["main", "dev"]},
        current={"/work/repo": "main"},
    )
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    first = await reconciler.reconcile(session, "/work/repo")
    second = await reconciler.reconcile(session, "/work/repo/src")

    assert (first, second) == (ReconcileOutcome.RESOLVED, ReconcileOutcome.REFRESHED)
    assert titles == [("s1", "repo")]
    assert session.last_resolved_root == "/work/repo"
    assert store.view == SlotView(
        label="repo",
        branch="main",
        branch_visible=True,
        other_branches=("dev",),
        other_branches_visible=True,
    )


@pytest.mark.asyncio
async def test_switching_repositories_retitles(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO, "/work/other": OTHER})
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    await reconciler.reconcile(session, "/work/repo")
    await reconciler.reconcile(session, "/work/other")

    assert titles == [("s1", "repo"), ("s1", "other")]
    assert store.active is not None and store.active.filepath == "/work/other"


@pytest.mark.asyncio
async def test_leaving_repository_clears_slot_and_restores_title(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO, "/tmp": None})
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    await reconciler.reconcile(session, "/work/repo")
    outcome = await reconciler.reconcile(session, "/tmp")

    assert outcome == ReconcileOutcome.CLEARED
    assert titles == [("s1", "repo"), ("s1", "Terminal")]
    assert session.last_resolved_root is None
    assert store.active is not None and store.active.context is None
    assert store.view == SlotView(label="Terminal")


@pytest.mark.asyncio
async def test_no_repository_without_previous_root_is_a_noop(make_resolver) -> None:
    reconciler, store, titles, views = _setup(make_resolver({"/tmp": None}))
    rendered = len(views)

    outcome = await reconciler.reconcile(Session(session_id="s1"), "/tmp")

    assert outcome == ReconcileOutcome.UNCHANGED
    assert titles == []
    assert len(views) == rendered
    assert store.view.label == "workspace"


@pytest.mark.asyncio
async def test_resolver_failure_keeps_previous_state(make_resolver) -> None:
    resolver = make_resolver(
        {"/work/repo": REPO, "/broken": CwdSyncError("git exploded", code=ExitCode.GIT_ERROR)}
    )
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    await reconciler.reconcile(session, "/work/repo")
    outcome = await reconciler.reconcile(session, "/broken")

    assert outcome == ReconcileOutcome.FAILED
    assert session.last_resolved_root == "/work/repo"
    assert titles == [("s1", "repo")]
    assert store.active is not None and store.active.context is not None


@pytest.mark.asyncio
async def test_branch_lookup_failures_degrade_to_empty(make_resolver) -> None:
    resolver = make_resolver(
        {"/work/repo": REPO},
        branches={"/work/repo": CwdSyncError("no branches", code=ExitCode.GIT_ERROR)},
        current={"/work/repo": OSError("gone")},
    )
    reconciler, store, titles, _views = _setup(resolver)

    outcome = await reconciler.reconcile(Session(session_id="s1"), "/work/repo")

    assert outcome == ReconcileOutcome.RESOLVED
    assert titles == [("s1", "repo")]
    assert store.view == SlotView(label="repo")


@pytest.mark.asyncio
async def test_only_latest_request_applies(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO, "/work/other": OTHER})
    gate = asyncio.Event()
    resolver.gates["/work/repo"] = gate
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    slow = asyncio.create_task(reconciler.reconcile(session, "/work/repo"))
    await asyncio.sleep(0)
    fast = await reconciler.reconcile(session, "/work/other")
    gate.set()
    late = await slow

    assert (fast, late) == (ReconcileOutcome.RESOLVED, ReconcileOutcome.STALE)
    assert titles == [("s1", "other")]
    assert session.last_resolved_root == "/work/other"
    assert store.active is not None and store.active.label == "other"


@pytest.mark.asyncio
async def test_results_for_closed_session_are_dropped(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO})
    gate = asyncio.Event()
    resolver.gates["/work/repo"] = gate
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    pending = asyncio.create_task(reconciler.reconcile(session, "/work/repo"))
    await asyncio.sleep(0)
    session.closed = True
    gate.set()

    assert await pending == ReconcileOutcome.STALE
    assert titles == []
    assert store.active is not None and store.active.context is None


@pytest.mark.asyncio
async def test_state_reports_in_flight_resolution(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO})
    gate = asyncio.Event()
    resolver.gates["/work/repo"] = gate
    reconciler, _store, _titles, _views = _setup(resolver)
    session = Session(session_id="s1")

    pending = asyncio.create_task(reconciler.reconcile(session, "/work/repo"))
    await asyncio.sleep(0)
    assert reconciler.state("s1") == ReconcileState.RESOLVING

    gate.set()
    await pending
    assert reconciler.state("s1") == ReconcileState.IDLE


@pytest.mark.asyncio
async def test_refresh_after_slot_switch_relabels_the_stale_slot(make_resolver) -> None:
    resolver = make_resolver({"/work/repo": REPO, "/work/other": OTHER})
    reconciler, store, titles, _views = _setup(resolver)
    session = Session(session_id="s1")
    first = store.active

    await reconciler.reconcile(session, "/work/repo")
    second = store.open_slot()
    await reconciler.reconcile(session, "/work/other")
    store.set_active(first)
    outcome = await reconciler.reconcile(session, "/work/other")

    assert outcome == ReconcileOutcome.REFRESHED
    assert titles == [("s1", "repo"), ("s1", "other")]
    assert first is not None and (first.label, first.filepath) == ("other", "/work/other")
    assert second.label == "other"
    assert store.view.label == "other"
