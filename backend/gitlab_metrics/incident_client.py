"""Client for incidents, their timeline events and the changes that caused them."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse

from gitlab_metrics.change_links import extract_from_timeline_events, find_timeline_event_by_tag, event_tags
from gitlab_metrics.dates import parse_datetime, to_iso, within
from gitlab_metrics.errors import EnrichmentFailure, GitLabError
from gitlab_metrics.fallback import FallbackChain
from gitlab_metrics.pagination import connection, paginate
from gitlab_metrics.rate_limit import INCIDENT_PAGE_DELAY_MS

logger = logging.getLogger(__name__)

# Incidents opened this long before an iteration can still be active in it.
# Empirically tuned, pending product-owner confirmation.
INCIDENT_LOOKBACK_DAYS = 60

# When an incident has a "start time" timeline event, that event alone
# decides whether the incident belongs to the iteration.
TIMELINE_START_OVERRIDES = True

INCIDENTS_QUERY = """
query getIncidents($fullPath: ID!, $after: String, $createdAfter: Time, $createdBefore: Time) {
  group(fullPath: $fullPath) {
    id
    issues(types: [INCIDENT], includeSubgroups: true, createdAfter: $createdAfter,
           createdBefore: $createdBefore, first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        iid
        title
        state
        createdAt
        closedAt
        updatedAt
        webUrl
        labels { nodes { title } }
      }
    }
  }
}
"""

TIMELINE_EVENTS_QUERY = """
query getIncidentTimelineEvents($fullPath: ID!, $incidentId: IssueID!) {
  project(fullPath: $fullPath) {
    incidentManagementTimelineEvents(incidentId: $incidentId) {
      nodes {
        id
        occurredAt
        createdAt
        note
        action
        timelineEventTags { nodes { name } }
        author { username name }
      }
    }
  }
}
"""


def _tagged_occurrence(tag_name: str):
    def extract(incident: dict, events: list) -> Optional[str]:
        event = find_timeline_event_by_tag(events, tag_name)
        return event.get("occurredAt") if event else None
    return extract


START_TIME_CHAIN = FallbackChain([
    ("timeline", _tagged_occurrence("start time")),
    ("created", lambda incident, events: incident.get("createdAt")),
])

END_TIME_CHAIN = FallbackChain([
    ("timeline_end", _tagged_occurrence("end time")),
    ("timeline_stop", _tagged_occurrence("stop time")),
    ("timeline_mitigated", _tagged_occurrence("impact mitigated")),
    ("closed", lambda incident, events: incident.get("closedAt")),
])


def extract_project_path(web_url: Optional[str]) -> Optional[str]:
    """Project path from an incident URL.

    https://gitlab.com/group/project/-/issues/123 -> group/project
    """
    if not web_url:
        return None
    path = urlparse(web_url).path.split("/-/")[0].strip("/")
    return path or None


class IncidentClient:
    """Fetches incidents active in an iteration and correlates their timelines."""

    def __init__(self, executor, rate_limiter, group_path: str, merge_request_client,
                 lookback_days: int = INCIDENT_LOOKBACK_DAYS,
                 timeline_start_overrides: bool = TIMELINE_START_OVERRIDES,
                 max_workers: int = 10):
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.group_path = group_path
        self.merge_request_client = merge_request_client
        self.lookback_days = lookback_days
        self.timeline_start_overrides = timeline_start_overrides
        self.max_workers = max_workers

    def fetch_incidents(self, start_date: str, end_date: str) -> list:
        """Fetch incidents relevant to [start_date, end_date].

        The query window starts lookback_days before start_date so incidents
        opened earlier but still active are seen. Each incident is then
        enriched with its timeline, actual start/end times, change link and
        change date.

        Args:
            start_date: Iteration start (ISO date or timestamp)
            end_date: Iteration end (ISO date or timestamp)

        Returns:
            List of enriched incident dicts

        Raises:
            ScopeNotFoundError: If the group does not exist
            GitLabError: If a page of the incident list fails
        """
        start = parse_datetime(start_date)
        end = parse_datetime(end_date)
        if start is None or end is None:
            raise ValueError(f"Invalid incident window: {start_date}..{end_date}")

        fetch_start = start - timedelta(days=self.lookback_days)
        logger.debug(
            "Querying incidents from group",
            extra={"context": {
                "fetchStartDate": to_iso(fetch_start),
                "iterationStartDate": start_date,
                "iterationEndDate": end_date,
                "lookbackDays": self.lookback_days,
            }}
        )

        incidents = paginate(
            self.executor,
            self.rate_limiter,
            INCIDENTS_QUERY,
            {"fullPath": self.group_path, "createdAfter": to_iso(fetch_start), "createdBefore": to_iso(end)},
            connection("group", "issues", scope_label=self.group_path),
            "fetching incidents",
            delay_ms=INCIDENT_PAGE_DELAY_MS,
        )
        logger.debug(
            f"Fetched {len(incidents)} incidents from broader date range",
            extra={"context": {"count": len(incidents)}}
        )

        if not incidents:
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            timelines = list(pool.map(self._safe_timeline_events, incidents))

        relevant = [
            self.enrich_incident(incident, events)
            for incident, events in zip(incidents, timelines)
            if self.is_relevant(incident, events, start, end)
        ]
        logger.info(
            f"{len(relevant)} of {len(incidents)} incidents relevant to iteration",
            extra={"context": {"startDate": start_date, "endDate": end_date}}
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(self._resolve_change_date, relevant))

    def fetch_incident_timeline_events(self, incident: dict) -> list:
        """Fetch timeline events for one incident.

        Raises:
            EnrichmentFailure: If the project path cannot be derived or the fetch fails
        """
        project_path = extract_project_path(incident.get("webUrl"))
        if not project_path:
            raise EnrichmentFailure(
                f"Could not extract project path from {incident.get('webUrl')}",
                "fetching incident timeline"
            )

        try:
            data = self.executor.execute(
                TIMELINE_EVENTS_QUERY,
                {"fullPath": project_path, "incidentId": incident.get("id")},
                "fetching incident timeline"
            )
        except GitLabError as e:
            raise EnrichmentFailure(str(e), "fetching incident timeline") from e

        timeline = (data.get("project") or {}).get("incidentManagementTimelineEvents") or {}
        return timeline.get("nodes") or []

    def is_relevant(self, incident: dict, events: list, start, end) -> bool:
        """Whether the incident had activity inside [start, end]."""
        start_event = find_timeline_event_by_tag(events, "start time")
        if start_event and self.timeline_start_overrides:
            return within(parse_datetime(start_event.get("occurredAt")), start, end)

        candidates = [incident.get("createdAt"), incident.get("closedAt"), incident.get("updatedAt")]
        if start_event:
            candidates.insert(0, start_event.get("occurredAt"))
        return any(within(parse_datetime(value), start, end) for value in candidates)

    def enrich_incident(self, incident: dict, events: list) -> dict:
        """Attach timeline metadata, actual start/end times and the change link."""
        actual_start, start_source = START_TIME_CHAIN.resolve(incident, events)
        actual_end, end_source = END_TIME_CHAIN.resolve(incident, events)
        change_link = extract_from_timeline_events(events)

        for index, event in enumerate(events):
            logger.debug(
                "Timeline event",
                extra={"context": {
                    "incidentIid": incident.get("iid"),
                    "eventIndex": index + 1,
                    "occurredAt": event.get("occurredAt"),
                    "tags": ", ".join(event_tags(event)) or "no tags",
                }}
            )

        enriched = dict(incident)
        enriched.update({
            "projectPath": extract_project_path(incident.get("webUrl")),
            "timelineEvents": events,
            "hasTimelineEvents": bool(events),
            "actualStartTime": actual_start,
            "actualEndTime": actual_end,
            "startTimeSource": start_source,
            "endTimeSource": end_source,
            "changeLink": change_link,
            "changeDate": None,
        })
        return enriched

    def _safe_timeline_events(self, incident: dict) -> list:
        try:
            return self.fetch_incident_timeline_events(incident)
        except EnrichmentFailure as e:
            logger.error(
                f"Error fetching timeline events: {e}",
                extra={"context": {"incidentId": incident.get("id")}}
            )
            return []

    def _resolve_change_date(self, incident: dict) -> dict:
        link = incident.get("changeLink")
        if not link:
            return incident

        try:
            if link["type"] == "merge_request":
                details = self.merge_request_client.fetch_merge_request_details(link["project"], link["id"])
                incident["changeDate"] = details.get("mergedAt")
            else:
                details = self.merge_request_client.fetch_commit_details(link["project"], link["sha"])
                incident["changeDate"] = details.get("committedDate")
        except GitLabError as e:
            logger.warning(
                f"Could not fetch change date for incident {incident.get('iid')}: {e}",
                extra={"context": {"incidentIid": incident.get("iid"), "changeLink": link.get("url")}}
            )
        return incident
