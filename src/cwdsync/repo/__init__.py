"""Repository context and UI slots."""

from .context import ContextResolver, RepositoryContext
from .git_resolver import GitContextResolver
from .slots import RepoSlot, RepoSlotStore, SlotView

__all__ = [
    "ContextResolver",
    "GitContextResolver",
    "RepoSlot",
    "RepoSlotStore",
    "RepositoryContext",
    "SlotView",
]
