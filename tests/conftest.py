from __future__ import annotations

import asyncio
import logging as py_logging
from pathlib import Path

import pytest

from cwdsync.repo.context import RepositoryContext


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "property" in path.parts:
            item.add_marker(pytest.mark.property)


@pytest.fixture
def reset_cwdsync_logger():
    yield
    logger = py_logging.getLogger("cwdsync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(py_logging.NOTSET)
    logger.propagate = True


class FakeResolver:
    """In-memory resolver; values that are exceptions are raised, gates hold a lookup open."""

    def __init__(
        self,
        contexts: dict[str, RepositoryContext | None | Exception] | None = None,
        *,
        branches: dict[str, list[str] | Exception] | None = None,
        current: dict[str, str | Exception] | None = None,
    ) -> None:
        self.contexts = dict(contexts or {})
        self.branches = dict(branches or {})
        self.current = dict(current or {})
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def resolve_context(self, path: str) -> RepositoryContext | None:
        self.calls.append(path)
        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()
        value = self.contexts.get(path)
        if isinstance(value, Exception):
            raise value
        return value

    async def list_branches(self, root: str) -> list[str]:
        value = self.branches.get(root, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def current_branch(self, root: str) -> str:
        value = self.current.get(root, "")
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def make_resolver():
    return FakeResolver


@pytest.fixture
def fixed_clock():
    class _Clock:
        def __init__(self) -> None:
            self.now = 0.0

        def __call__(self) -> float:
            return self.now

    return _Clock()
