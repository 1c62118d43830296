"""Repository context model and the resolver contract."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol

from typing_extensions import TypedDict


class ContextPayload(TypedDict):
    root: str
    name: str
    branches: list[str]
    active_branch: str


@dataclass(frozen=True)
class RepositoryContext:
    root: str
    name: str
    branches: tuple[str, ...] = ()
    active_branch: str = ""

    def with_branches(self, branches: list[str] | tuple[str, ...], active_branch: str) -> RepositoryContext:
        return replace(self, branches=tuple(branches), active_branch=active_branch)

    def to_payload(self) -> ContextPayload:
        return ContextPayload(
            root=self.root,
            name=self.name,
            branches=list(self.branches),
            active_branch=self.active_branch,
        )


class ContextResolver(Protocol):
    async def resolve_context(self, path: str) -> RepositoryContext | None: ...

    async def list_branches(self, root: str) -> list[str]: ...

    async def current_branch(self, root: str) -> str: ...
