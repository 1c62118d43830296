"""Open repository slots (tabs) and the active-slot view."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cwdsync.repo.context import RepositoryContext

logger = py_logging.getLogger(__name__)


@dataclass(eq=False)
class RepoSlot:
    label: str = ""
    filepath: str = ""
    context: RepositoryContext | None = None


@dataclass(frozen=True)
class SlotView:
    label: str = ""
    branch: str = ""
    branch_visible: bool = False
    other_branches: tuple[str, ...] = ()
    other_branches_visible: bool = False


EMPTY_VIEW = SlotView()

SlotRenderer = Callable[[SlotView], None]


def sibling_branches(branches: Iterable[str], active_branch: str) -> list[str]:
    """Branches to list next to the indicator: no blanks, no repeats, not the active one."""
    active = active_branch.strip()
    seen: set[str] = set()
    result: list[str] = []
    for branch in branches:
        name = branch.strip()
        if not name or name == active or name in seen:
            continue
        seen.add(name)
        result.append(name)
    return result


def render_slot(slot: RepoSlot | None) -> SlotView:
    if slot is None:
        return EMPTY_VIEW
    context = slot.context
    if context is None:
        return SlotView(label=slot.label)
    branch = context.active_branch.strip()
    others = tuple(sibling_branches(context.branches, branch))
    return SlotView(
        label=slot.label,
        branch=branch,
        branch_visible=bool(branch),
        other_branches=others,
        other_branches_visible=bool(others),
    )


class RepoSlotStore:
    def __init__(self, renderer: SlotRenderer | None = None) -> None:
        self._renderer = renderer
        self._slots: list[RepoSlot] = []
        self._active: RepoSlot | None = None
        self._view: SlotView = EMPTY_VIEW

    @property
    def slots(self) -> tuple[RepoSlot, ...]:
        return tuple(self._slots)

    @property
    def active(self) -> RepoSlot | None:
        return self._active

    @property
    def view(self) -> SlotView:
        return self._view

    def add(self, slot: RepoSlot) -> RepoSlot:
        self._slots.append(slot)
        return slot

    def remove(self, slot: RepoSlot) -> None:
        self._slots = [item for item in self._slots if item is not slot]
        if self._active is slot:
            self._active = None

    def set_active(self, slot: RepoSlot | None) -> None:
        if slot is not None and not self._contains(slot):
            raise ValueError("Cannot activate a slot that is not in the store.")
        self._active = slot
        self.render(force=True)

    def close(self, slot: RepoSlot) -> RepoSlot | None:
        """Remove ``slot``; if it was active, activate the next slot, else the previous one."""
        index = self._index(slot)
        if index is None:
            return self._active
        was_active = self._active is slot
        neighbor: RepoSlot | None = None
        if was_active:
            if index + 1 < len(self._slots):
                neighbor = self._slots[index + 1]
            elif index > 0:
                neighbor = self._slots[index - 1]
        self.remove(slot)
        if was_active:
            self.set_active(neighbor)
        logger.debug("Closed slot label=%s remaining=%s", slot.label, len(self._slots))
        return self._active

    def hydrate(self, label: str = "", *, default_label: str = "") -> RepoSlot:
        """Adopt a slot that already exists in the UI at startup."""
        slot = self.add(RepoSlot(label=label.strip() or default_label))
        self.set_active(slot)
        return slot

    def open_slot(self) -> RepoSlot:
        slot = self.add(RepoSlot())
        self.set_active(slot)
        return slot

    def apply_context(self, context: RepositoryContext, *, relabel: bool) -> bool:
        """Record ``context`` on the active slot.

        The label also follows ``context.name`` when the slot last held another
        root, because the session root may have been resolved in a different slot.
        """
        slot = self._active
        if slot is None:
            logger.debug("No active slot for context root=%s", context.root)
            return False
        if relabel or slot.context is None or slot.context.root != context.root:
            slot.label = context.name
        slot.context = context
        slot.filepath = context.root
        self.render()
        return True

    def clear_context(self, label: str = "") -> bool:
        slot = self._active
        if slot is None:
            return False
        slot.context = None
        slot.filepath = ""
        slot.label = label
        self.render()
        return True

    def render(self, *, force: bool = False) -> SlotView:
        view = render_slot(self._active)
        changed = view != self._view
        self._view = view
        if (changed or force) and self._renderer is not None:
            self._renderer(view)
        return view

    def _index(self, slot: RepoSlot) -> int | None:
        for index, item in enumerate(self._slots):
            if item is slot:
                return index
        return None

    def _contains(self, slot: RepoSlot) -> bool:
        return self._index(slot) is not None
