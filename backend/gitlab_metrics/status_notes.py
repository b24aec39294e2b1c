"""Heuristic extraction of work-item status transitions from system notes."""

import re
from typing import Iterable, Optional

from gitlab_metrics.dates import parse_datetime

STATUS_NOTE_ACTION = "work_item_status"

STATUS_PATTERN = re.compile(r"set status to \*\*(.+?)\*\*")

IN_PROGRESS_KEYWORDS = ("in progress", "in-progress", "wip", "working")


class StatusTransitionClassifier:
    """Detects lifecycle transitions in an issue's audit trail.

    Matching rules can be extended (extra synonyms, other phrasing)
    without touching the clients that fetch the notes.
    """

    def __init__(self, pattern: re.Pattern = STATUS_PATTERN,
                 in_progress_keywords: Iterable[str] = IN_PROGRESS_KEYWORDS,
                 action: str = STATUS_NOTE_ACTION):
        self.pattern = pattern
        self.in_progress_keywords = tuple(k.lower() for k in in_progress_keywords)
        self.action = action

    def is_status_note(self, note: dict) -> bool:
        metadata = note.get("systemNoteMetadata") or {}
        return bool(note.get("system")) and metadata.get("action") == self.action

    def parse_status_changes(self, notes: list) -> list:
        """Parse status changes from notes in chronological order.

        Only system notes tagged with the status action are considered.
        Ties on timestamp keep the original fetch order.

        Returns:
            List of {"status": str, "timestamp": str}
        """
        changes = []
        for note in notes:
            if not self.is_status_note(note):
                continue
            match = self.pattern.search(note.get("body") or "")
            if not match:
                continue
            changes.append({"status": match.group(1), "timestamp": note.get("createdAt")})

        return sorted(changes, key=lambda c: _sort_key(c["timestamp"]))

    def is_in_progress(self, status: Optional[str]) -> bool:
        if not status:
            return False
        lowered = status.lower()
        return any(keyword in lowered for keyword in self.in_progress_keywords)

    def extract_in_progress_timestamp(self, notes: list) -> Optional[str]:
        """Timestamp of the first status change into an in-progress state."""
        for change in self.parse_status_changes(notes):
            if self.is_in_progress(change["status"]):
                return change["timestamp"]
        return None


def _sort_key(timestamp):
    parsed = parse_datetime(timestamp)
    # Unparseable timestamps sort last
    return (parsed is None, parsed.timestamp() if parsed else 0.0)
