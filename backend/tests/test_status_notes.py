"""Tests for status-note parsing and change-link extraction."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import status_note, timeline_event
from gitlab_metrics.change_links import extract_change_link, extract_from_timeline_events, find_timeline_event_by_tag
from gitlab_metrics.fallback import FallbackChain
from gitlab_metrics.status_notes import StatusTransitionClassifier


class TestStatusTransitionClassifier:
    """Test the in-progress heuristic."""

    def test_parses_and_sorts_status_changes(self):
        """Changes should come back oldest first."""
        notes = [
            status_note("Done", "2025-01-05T00:00:00Z"),
            status_note("In progress", "2025-01-02T00:00:00Z"),
        ]

        changes = StatusTransitionClassifier().parse_status_changes(notes)

        assert changes == [
            {"status": "In progress", "timestamp": "2025-01-02T00:00:00Z"},
            {"status": "Done", "timestamp": "2025-01-05T00:00:00Z"},
        ]

    def test_ties_keep_fetch_order(self):
        notes = [
            status_note("Review", "2025-01-02T00:00:00Z"),
            status_note("Working", "2025-01-02T00:00:00Z"),
        ]

        changes = StatusTransitionClassifier().parse_status_changes(notes)

        assert [c["status"] for c in changes] == ["Review", "Working"]

    def test_ignores_non_status_notes(self):
        """User comments and other system notes should be skipped."""
        notes = [
            {"body": "set status to **In progress**", "system": False,
             "systemNoteMetadata": None, "createdAt": "2025-01-01T00:00:00Z"},
            {"body": "set status to **In progress**", "system": True,
             "systemNoteMetadata": {"action": "label"}, "createdAt": "2025-01-01T00:00:00Z"},
        ]

        assert StatusTransitionClassifier().parse_status_changes(notes) == []

    def test_in_progress_keywords_case_insensitive(self):
        classifier = StatusTransitionClassifier()
        for status in ["In Progress", "in-progress", "WIP", "Working on it"]:
            assert classifier.is_in_progress(status) is True
        for status in ["Done", "To do", "", None]:
            assert classifier.is_in_progress(status) is False

    def test_extracts_first_in_progress_timestamp(self):
        notes = [
            status_note("To do", "2025-01-01T00:00:00Z"),
            status_note("WIP", "2025-01-03T00:00:00Z"),
            status_note("In progress", "2025-01-04T00:00:00Z"),
        ]

        assert StatusTransitionClassifier().extract_in_progress_timestamp(notes) == "2025-01-03T00:00:00Z"

    def test_extra_keywords(self):
        """Synonyms can be added without touching the clients."""
        classifier = StatusTransitionClassifier(in_progress_keywords=["doing"])
        notes = [status_note("Doing", "2025-01-03T00:00:00Z")]

        assert classifier.extract_in_progress_timestamp(notes) == "2025-01-03T00:00:00Z"


class TestChangeLinks:
    """Test change-link extraction from timeline notes."""

    def test_merge_request_link(self):
        link = extract_change_link("Caused by https://gitlab.com/acme/web/-/merge_requests/42 deploy")
        assert link == {
            "type": "merge_request",
            "url": "https://gitlab.com/acme/web/-/merge_requests/42",
            "project": "acme/web",
            "id": "42",
        }

    def test_commit_link_with_subgroup(self):
        link = extract_change_link("see https://gitlab.com/acme/platform/api/-/commit/0a1b2c3d")
        assert link["type"] == "commit"
        assert link["project"] == "acme/platform/api"
        assert link["sha"] == "0a1b2c3d"

    def test_merge_request_preferred_over_commit(self):
        note = ("commit https://gitlab.com/acme/web/-/commit/abc123 "
                "from https://gitlab.com/acme/web/-/merge_requests/7")
        assert extract_change_link(note)["type"] == "merge_request"

    def test_no_link(self):
        assert extract_change_link("database overloaded") is None
        assert extract_change_link(None) is None

    def test_only_start_time_event_is_scanned(self):
        """Links on other timeline events should be ignored."""
        events = [
            timeline_event("2025-01-02T00:00:00Z", ["End time"],
                           "https://gitlab.com/acme/web/-/merge_requests/1"),
            timeline_event("2025-01-01T00:00:00Z", ["Start time"], "no link here"),
        ]
        assert extract_from_timeline_events(events) is None

    def test_tag_match_is_substring_case_insensitive(self):
        events = [timeline_event("2025-01-01T00:00:00Z", ["Impact Mitigated (partial)"])]
        assert find_timeline_event_by_tag(events, "impact mitigated") is events[0]


class TestFallbackChain:
    def test_first_non_empty_wins(self):
        chain = FallbackChain([
            ("first", lambda r: r.get("a")),
            ("second", lambda r: r.get("b")),
        ])

        assert chain.resolve({"a": None, "b": "x"}) == ("x", "second")
        assert chain.resolve({"a": "y", "b": "x"}) == ("y", "first")
        assert chain.resolve({}) == (None, None)
