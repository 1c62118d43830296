from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from cwdsync.repo.context import RepositoryContext
from cwdsync.repo.slots import RepoSlot, render_slot, sibling_branches

_names = st.text(alphabet=st.characters(min_codepoint=32, max_codepoint=126), max_size=12)


@given(st.lists(_names, max_size=12), _names)
def test_sibling_branches_are_unique_nonblank_and_exclude_active(branches: list[str], active: str) -> None:
    result = sibling_branches(branches, active)

    expected = list(dict.fromkeys(name.strip() for name in branches if name.strip()))
    expected = [name for name in expected if name != active.strip()]
    assert result == expected


@given(st.lists(_names, max_size=12), _names)
def test_indicator_visibility_follows_content(branches: list[str], active: str) -> None:
    context = RepositoryContext(root="/r", name="r", branches=tuple(branches), active_branch=active)

    view = render_slot(RepoSlot(label="r", context=context))

    assert view.branch_visible is bool(active.strip())
    assert view.other_branches_visible is bool(view.other_branches)
