"""Extraction of merge request / commit links from incident timeline notes."""

import re
from typing import Optional

# https://gitlab.com/group/subgroup/project/-/merge_requests/123
MR_PATTERN = re.compile(r"https?://([^/\s]+)/((?:[^/\s]+/)*[^/\s]+)/-/merge_requests/(\d+)")

# https://gitlab.com/group/project/-/commit/0a1b2c3d
COMMIT_PATTERN = re.compile(r"https?://([^/\s]+)/((?:[^/\s]+/)*[^/\s]+)/-/commit/([a-f0-9]+)")

START_TIME_TAG = "start time"


def event_tags(event: dict) -> list:
    tags = (event.get("timelineEventTags") or {}).get("nodes") or []
    return [tag.get("name") or "" for tag in tags]


def find_timeline_event_by_tag(timeline_events: Optional[list], tag_name: str) -> Optional[dict]:
    """First timeline event carrying a tag that contains tag_name (case-insensitive)."""
    wanted = tag_name.lower()
    for event in timeline_events or []:
        if any(wanted in tag.lower() for tag in event_tags(event)):
            return event
    return None


def extract_change_link(note: Optional[str]) -> Optional[dict]:
    """Find a change link in free text. Merge requests win over commits."""
    if not note:
        return None

    match = MR_PATTERN.search(note)
    if match:
        return {
            "type": "merge_request",
            "url": match.group(0),
            "project": match.group(2),
            "id": match.group(3),
        }

    match = COMMIT_PATTERN.search(note)
    if match:
        return {
            "type": "commit",
            "url": match.group(0),
            "project": match.group(2),
            "sha": match.group(3),
        }

    return None


def extract_from_timeline_events(timeline_events: Optional[list]) -> Optional[dict]:
    """Change link from the note of the incident's "start time" event."""
    start_event = find_timeline_event_by_tag(timeline_events, START_TIME_TAG)
    if not start_event:
        return None
    return extract_change_link(start_event.get("note"))
