"""
Diagnostic events recorded while rebuilding history.

Anomalies that do not stop the conversion (dropped labels, lost versions,
incomplete merges...) are recorded here instead of being raised, so a human
can audit the conversion afterwards and tests can assert on them.
"""
from __future__ import annotations
from typing import Dict, List, Optional, TextIO

LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}

BRANCH_FILTERED = "branch-filtered"
BRANCH_PLACEHOLDER = "branch-placeholder"
LABEL_FILTERED = "label-filtered"
LABEL_ABANDONED = "label-abandoned"
LABEL_INCONSISTENT = "label-inconsistent"
LABEL_INCOMPLETE = "label-incomplete"
LABEL_LOST_VERSION = "label-lost-version"
VERSION_ORPHANED = "version-orphaned"
VERSION_LOST = "version-lost"
VERSION_NAMES = "version-names"
ELEMENT_REMOVED_EARLY = "element-removed-early"
MERGE_IGNORED = "merge-ignored"
MERGE_IMPOSSIBLE = "merge-impossible"
MERGE_INCOMPLETE = "merge-incomplete"
MERGE_SKIPPED = "merge-skipped"


class Event:
    def __init__(self, level: str, kind: str, message: str, fields: Dict[str, object]):
        self.level = level
        self.kind = kind
        self.message = message
        self.fields = fields

    def __repr__(self):
        return f"<Event {self.level} {self.kind}: {self.message}>"


class Diagnostics:
    """In-memory event log, optionally echoed to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None, level: str = "warning"):
        self.stream = stream
        self.threshold = LEVELS[level]
        self.events: List[Event] = []

    def record(self, level: str, kind: str, message: str, **fields) -> Event:
        event = Event(level, kind, message, fields)
        self.events.append(event)
        if self.stream is not None and LEVELS[level] >= self.threshold:
            self.stream.write(f"{level.capitalize()}: {message}\n")
        return event

    def debug(self, kind: str, message: str, **fields) -> Event:
        return self.record("debug", kind, message, **fields)

    def info(self, kind: str, message: str, **fields) -> Event:
        return self.record("info", kind, message, **fields)

    def warning(self, kind: str, message: str, **fields) -> Event:
        return self.record("warning", kind, message, **fields)

    def error(self, kind: str, message: str, **fields) -> Event:
        return self.record("error", kind, message, **fields)

    def of_kind(self, kind: str) -> List[Event]:
        return [e for e in self.events if e.kind == kind]

    def counts(self, level: str = "info") -> Dict[str, int]:
        minimum = LEVELS[level]
        result: Dict[str, int] = {}
        for event in self.events:
            if LEVELS[event.level] >= minimum:
                result[event.kind] = result.get(event.kind, 0) + 1
        return result
