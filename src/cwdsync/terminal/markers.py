"""Directory-marker detection in terminal output.

Two detection paths feed the same sink:

* passive scan: every decoded output chunk is searched for
  ``ESC ] 777 ; cwd=<path> BEL`` and ``ESC ] 7 ; file://<host><path> ST``;
* structured dispatch: a terminal parser that supports per-OSC handlers calls
  :meth:`CwdMarkerDetector.handle_osc` with the already-parsed payload.

The installed shell hook prints a legacy marker and a file-URI marker back to
back on every prompt, so a marker of the other kind with the same path that
directly follows an occurrence is folded into it. When both paths see the same
bytes, each occurrence is claimed by whichever path reports it first and the
other path's report is dropped if it arrives inside the dedup window.
"""

from __future__ import annotations

import logging as py_logging
import re
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from cwdsync.terminal.models import (
    DirectoryChange,
    DirectoryMarker,
    MarkerKind,
    MarkerSource,
    Session,
)
from cwdsync.terminal.paths import decode_file_uri_path, normalize_path

logger = py_logging.getLogger(__name__)

OSC_FILE_URI = 7
OSC_LEGACY_CWD = 777

_LEGACY_PATTERN = r"\x1b\]777;cwd=(?P<legacy>[^\x07\x1b]*)\x07"
_FILE_URI_PATTERN = (
    r"\x1b\]7;file://(?P<host>[^/\x07\x1b\x9c]*)(?P<uri>/[^\x07\x1b\x9c]*)"
    r"(?:\x07|\x1b\\|\x9c|(?=\x1b))"
)
MARKER_RE = re.compile(f"{_LEGACY_PATTERN}|{_FILE_URI_PATTERN}")

DEFAULT_DEDUPE_WINDOW_SECONDS = 0.5

MarkerSink = Callable[[DirectoryChange], None]
OscHandler = Callable[[str], bool]


class OscDispatcher(Protocol):
    def register_osc_handler(self, code: int, handler: OscHandler) -> object: ...


@dataclass
class _Occurrence:
    kind: MarkerKind
    spellings: frozenset[str]
    observed_at: float


def scan(text: str) -> list[DirectoryMarker]:
    """Return every well-formed marker in ``text`` in left-to-right order."""
    markers: list[DirectoryMarker] = []
    for match in MARKER_RE.finditer(text):
        legacy = match.group("legacy")
        if legacy is not None:
            if legacy:
                markers.append(DirectoryMarker(path=legacy, kind=MarkerKind.LEGACY_CWD))
            continue
        raw = match.group("uri")
        markers.append(
            DirectoryMarker(
                path=decode_file_uri_path(raw),
                kind=MarkerKind.FILE_URI,
                host=match.group("host"),
                raw_path=raw,
            )
        )
    return markers


def strip_markers(text: str) -> str:
    return MARKER_RE.sub("", text)


def parse_osc_payload(code: int, payload: str) -> DirectoryMarker | None:
    """Decode the payload of an OSC 7 or OSC 777 sequence, or ``None``."""
    if code == OSC_LEGACY_CWD:
        if not payload.startswith("cwd="):
            return None
        path = payload[len("cwd="):]
        if not path or "\x07" in path or "\x1b" in path:
            return None
        return DirectoryMarker(path=path, kind=MarkerKind.LEGACY_CWD)
    if code == OSC_FILE_URI:
        if not payload.startswith("file://"):
            return None
        rest = payload[len("file://"):]
        slash = rest.find("/")
        if slash < 0:
            return None
        return DirectoryMarker(
            path=decode_file_uri_path(rest[slash:]),
            kind=MarkerKind.FILE_URI,
            host=rest[:slash],
            raw_path=rest[slash:],
        )
    return None


class CwdMarkerDetector:
    def __init__(
        self,
        sink: MarkerSink | None = None,
        *,
        dedupe_window_seconds: float = DEFAULT_DEDUPE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._window = max(0.0, dedupe_window_seconds)
        self._clock = clock
        self._open: dict[tuple[str, MarkerSource], _Occurrence] = {}
        self._ledgers: dict[
            tuple[str, MarkerSource], deque[tuple[frozenset[str], float]]
        ] = {}

    def feed(self, session: Session, text: str) -> list[DirectoryChange]:
        """Passive path: scan an output chunk and report its markers."""
        if not text or "\x1b]" not in text:
            return []
        changes: list[DirectoryChange] = []
        for marker in scan(text):
            change = self._observe(session, marker, MarkerSource.PASSIVE)
            if change is not None:
                changes.append(change)
        return changes

    def handle_osc(self, session: Session, code: int, payload: str) -> bool:
        """Structured path. Returns ``True`` when the sequence must not be rendered."""
        if code not in (OSC_FILE_URI, OSC_LEGACY_CWD):
            return False
        marker = parse_osc_payload(code, payload)
        if marker is None:
            # OSC 777 is shared with other extensions (e.g. notify); leave those alone.
            return code == OSC_FILE_URI
        self._observe(session, marker, MarkerSource.DISPATCH)
        return True

    def attach(self, session: Session, dispatcher: OscDispatcher) -> list[object]:
        registrations = []
        for code in (OSC_FILE_URI, OSC_LEGACY_CWD):
            registrations.append(
                dispatcher.register_osc_handler(
                    code,
                    lambda payload, _code=code: self.handle_osc(session, _code, payload),
                )
            )
        logger.debug("Registered OSC handlers session=%s codes=7,777", session.session_id)
        return registrations

    def forget(self, session_id: str) -> None:
        for source in MarkerSource:
            self._open.pop((session_id, source), None)
            self._ledgers.pop((session_id, source), None)

    def _observe(
        self, session: Session, marker: DirectoryMarker, source: MarkerSource
    ) -> DirectoryChange | None:
        now = self._clock()
        path = normalize_path(marker.path, session.platform)
        spellings = _spellings(marker, path, session)
        key = (session.session_id, source)

        previous = self._open.get(key)
        if (
            previous is not None
            and previous.kind != marker.kind
            and previous.spellings & spellings
            and now - previous.observed_at <= self._window
        ):
            del self._open[key]
            return None
        self._open[key] = _Occurrence(kind=marker.kind, spellings=spellings, observed_at=now)

        if self._claimed_elsewhere(session.session_id, source, spellings, now):
            logger.debug(
                "Dropped duplicate marker session=%s source=%s path=%s",
                session.session_id,
                source.value,
                path,
            )
            return None

        ledger = self._ledgers.setdefault(key, deque())
        _expire(ledger, now, self._window)
        ledger.append((spellings, now))

        change = DirectoryChange(
            session_id=session.session_id,
            path=path,
            marker=marker,
            source=source,
            observed_at=now,
        )
        if self._sink is not None:
            self._sink(change)
        return change

    def _claimed_elsewhere(
        self, session_id: str, source: MarkerSource, spellings: frozenset[str], now: float
    ) -> bool:
        for other in MarkerSource:
            if other == source:
                continue
            ledger = self._ledgers.get((session_id, other))
            if not ledger:
                continue
            _expire(ledger, now, self._window)
            for index, (claimed, _) in enumerate(ledger):
                if claimed & spellings:
                    del ledger[index]
                    return True
        return False


def _spellings(marker: DirectoryMarker, path: str, session: Session) -> frozenset[str]:
    """Every form of the path a companion marker may carry.

    The installed hooks print ``$PWD`` unencoded in both markers, so a
    directory name containing ``%XX`` reaches us decoded in one and raw in
    the other.
    """
    if not marker.raw_path:
        return frozenset((path,))
    return frozenset((path, normalize_path(marker.raw_path, session.platform)))


def _expire(ledger: deque[tuple[frozenset[str], float]], now: float, window: float) -> None:
    while ledger and now - ledger[0][1] > window:
        ledger.popleft()
