from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from cwdsync.terminal.markers import CwdMarkerDetector, scan, strip_markers
from cwdsync.terminal.models import Session

_printable = st.characters(min_codepoint=32, max_codepoint=126)
_paths = st.text(alphabet=_printable, min_size=1, max_size=24)
_noise = st.text(alphabet=_printable, max_size=12)


def _legacy(path: str) -> str:
    return f"\x1b]777;cwd={path}\x07"


@given(st.lists(st.tuples(_noise, _paths), max_size=8), _noise)
def test_every_legacy_marker_is_reported_in_order(chunks: list[tuple[str, str]], tail: str) -> None:
    text = "".join(noise + _legacy(path) for noise, path in chunks) + tail
    detector = CwdMarkerDetector(clock=lambda: 0.0)

    changes = detector.feed(Session(session_id="p"), text)

    assert [marker.path for marker in scan(text)] == [path for _, path in chunks]
    assert [change.path for change in changes] == [path for _, path in chunks]


@given(st.lists(st.tuples(_noise, _paths), max_size=8), _noise)
def test_stripping_leaves_only_surrounding_output(chunks: list[tuple[str, str]], tail: str) -> None:
    text = "".join(noise + _legacy(path) for noise, path in chunks) + tail

    assert strip_markers(text) == "".join(noise for noise, _ in chunks) + tail


@given(_paths)
def test_paired_prompt_markers_count_once(path: str) -> None:
    uri_path = "/" + path.lstrip("/").replace("%", "")
    text = _legacy(uri_path) + f"\x1b]7;file://{uri_path}\x07"
    detector = CwdMarkerDetector(clock=lambda: 0.0)

    assert len(detector.feed(Session(session_id="p"), text)) == 1
