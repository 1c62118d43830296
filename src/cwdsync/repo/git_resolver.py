"""Repository metadata lookups backed by the git CLI."""

from __future__ import annotations

import asyncio
import logging as py_logging
import subprocess
from collections.abc import Callable
from pathlib import PurePath

from cwdsync.errors import CwdSyncError, ExitCode
from cwdsync.repo.context import RepositoryContext

logger = py_logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

_BRANCH_PREFIXES = ("* ", "+ ")


def _run_git(path: str, args: list[str], runner: Runner) -> subprocess.CompletedProcess:
    return runner(["git", "-C", path, *args], capture_output=True, text=True, check=False)


def repository_name(root: str) -> str:
    name = PurePath(root.replace("\\", "/")).name
    return name or root


def parse_branch_listing(raw: str) -> list[str]:
    """Parse ``git branch -a`` output, keeping git's order."""
    branches: list[str] = []
    for line in raw.splitlines():
        entry = line.strip()
        for prefix in _BRANCH_PREFIXES:
            if entry.startswith(prefix):
                entry = entry[len(prefix):].strip()
                break
        if not entry or "->" in entry or entry.startswith("("):
            continue
        branches.append(entry)
    return branches


class GitContextResolver:
    def __init__(self, runner: Runner = subprocess.run) -> None:
        self._runner = runner

    async def resolve_context(self, path: str) -> RepositoryContext | None:
        return await asyncio.to_thread(self.resolve_context_sync, path)

    async def list_branches(self, root: str) -> list[str]:
        return await asyncio.to_thread(self.list_branches_sync, root)

    async def current_branch(self, root: str) -> str:
        return await asyncio.to_thread(self.current_branch_sync, root)

    def resolve_context_sync(self, path: str) -> RepositoryContext | None:
        try:
            result = _run_git(path, ["rev-parse", "--show-toplevel"], self._runner)
        except OSError as exc:
            raise CwdSyncError(
                "Failed to run git.",
                code=ExitCode.GIT_ERROR,
                hint=str(exc) or "Ensure git is installed and on PATH.",
            ) from exc
        if result.returncode != 0:
            logger.debug("Not inside a repository path=%s", path)
            return None
        root = result.stdout.strip()
        if not root:
            return None
        return RepositoryContext(root=root, name=repository_name(root))

    def list_branches_sync(self, root: str) -> list[str]:
        result = self._checked(root, ["branch", "-a"], "Failed to list branches")
        branches = parse_branch_listing(result.stdout)
        logger.debug("Discovered %s branches repo=%s", len(branches), root)
        return branches

    def current_branch_sync(self, root: str) -> str:
        result = self._checked(root, ["branch", "--show-current"], "Failed to read current branch")
        branch = result.stdout.strip()
        if not branch:
            logger.warning("Detached HEAD detected repo=%s", root)
        return branch

    def _checked(self, root: str, args: list[str], message: str) -> subprocess.CompletedProcess:
        try:
            result = _run_git(root, args, self._runner)
        except OSError as exc:
            raise CwdSyncError(
                f"{message} for {root}.",
                code=ExitCode.GIT_ERROR,
                hint=str(exc) or "Ensure git is installed and on PATH.",
            ) from exc
        if result.returncode != 0:
            logger.error("%s repo=%s stderr=%s", message, root, result.stderr.strip())
            raise CwdSyncError(
                f"{message} for {root}.",
                code=ExitCode.GIT_ERROR,
                hint=(result.stderr or "Run git manually to inspect repository state.").strip(),
            )
        return result
