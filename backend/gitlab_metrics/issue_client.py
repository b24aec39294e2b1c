"""Client for iteration issues and their status-change notes."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from gitlab_metrics.errors import EnrichmentFailure, GitLabError
from gitlab_metrics.fallback import FallbackChain
from gitlab_metrics.pagination import connection, paginate
from gitlab_metrics.rate_limit import ISSUE_PAGE_DELAY_MS
from gitlab_metrics.status_notes import StatusTransitionClassifier

logger = logging.getLogger(__name__)

# Status changes usually happen early in an issue's history, so only a
# small window of notes is requested with the issue list.
NOTES_WINDOW = 20
NOTES_PAGE_SIZE = 100

ITERATION_ISSUES_QUERY = """
query getIterationIssues($fullPath: ID!, $iterationId: [ID!], $after: String,
                         $notesFirst: Int, $not: NegatedIssueFilterInput) {
  group(fullPath: $fullPath) {
    id
    issues(iterationId: $iterationId, includeSubgroups: true, first: 100, after: $after, not: $not) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        iid
        title
        state
        createdAt
        closedAt
        weight
        webUrl
        labels { nodes { title } }
        assignees { nodes { username } }
        notes(first: $notesFirst) {
          pageInfo { hasNextPage endCursor }
          nodes {
            id
            body
            system
            systemNoteMetadata { action }
            createdAt
          }
        }
      }
    }
  }
}
"""

ISSUE_NOTES_QUERY = """
query getIssueNotes($issueId: IssueID!, $after: String, $first: Int) {
  issue(id: $issueId) {
    id
    notes(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        body
        system
        systemNoteMetadata { action }
        createdAt
      }
    }
  }
}
"""


class IssueClient:
    """Fetches iteration issues and derives when each one went in progress."""

    def __init__(self, executor, rate_limiter, group_path: str,
                 classifier: Optional[StatusTransitionClassifier] = None,
                 max_workers: int = 10):
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.group_path = group_path
        self.classifier = classifier or StatusTransitionClassifier()
        self.max_workers = max_workers
        self.in_progress_chain = FallbackChain([
            ("status_change", lambda issue, notes: self.classifier.extract_in_progress_timestamp(notes)),
            ("created", lambda issue, notes: issue.get("createdAt")),
        ])

    def fetch_iteration_issues(self, iteration_id: str) -> list:
        """Fetch all non-incident issues in an iteration, enriched with inProgressAt.

        Raises:
            ScopeNotFoundError: If the group does not exist
            GitLabError: If any page fails
        """
        issues = paginate(
            self.executor,
            self.rate_limiter,
            ITERATION_ISSUES_QUERY,
            {
                "fullPath": self.group_path,
                "iterationId": [iteration_id],
                "notesFirst": NOTES_WINDOW,
                "not": {"types": ["INCIDENT"]},
            },
            connection("group", "issues", scope_label=self.group_path),
            "fetching iteration issues",
            delay_ms=ISSUE_PAGE_DELAY_MS,
        )

        logger.info(
            f"Fetched {len(issues)} issues for iteration {iteration_id}",
            extra={"context": {"iterationId": iteration_id, "count": len(issues)}}
        )

        return self._enrich_issues(issues)

    def fetch_additional_notes(self, issue_id: str, start_cursor: Optional[str]) -> list:
        """Fetch every note page after start_cursor for a single issue.

        Raises:
            EnrichmentFailure: If the issue is missing or any page fails
        """
        try:
            notes = paginate(
                self.executor,
                self.rate_limiter,
                ISSUE_NOTES_QUERY,
                {"issueId": issue_id, "first": NOTES_PAGE_SIZE},
                connection("issue", "notes", scope_label=issue_id),
                "fetching issue notes",
                delay_ms=ISSUE_PAGE_DELAY_MS,
                after=start_cursor,
            )
        except GitLabError as e:
            raise EnrichmentFailure(f"Failed to fetch additional notes: {e}", "fetching issue notes") from e

        logger.debug(
            "Completed fetching all notes",
            extra={"context": {"issueId": issue_id, "totalNotes": len(notes)}}
        )
        return notes

    def _enrich_issues(self, issues: list) -> list:
        needs_backfill = []
        for issue in issues:
            notes = _note_nodes(issue)
            if issue.get("state") != "closed":
                # Open issues are never backfilled and never guessed
                issue["inProgressAt"] = None
                issue["inProgressAtSource"] = None
                issue["statusChanges"] = self.classifier.parse_status_changes(notes)
                continue

            in_progress_at = self.classifier.extract_in_progress_timestamp(notes)
            if in_progress_at is None and _has_more_notes(issue):
                needs_backfill.append(issue)
            else:
                self._resolve_in_progress(issue, notes)

        if needs_backfill:
            logger.debug(
                f"Backfilling notes for {len(needs_backfill)} closed issues",
                extra={"context": {"count": len(needs_backfill)}}
            )
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                extra_notes = list(pool.map(self._backfill_notes, needs_backfill))
            for issue, notes in zip(needs_backfill, extra_notes):
                self._resolve_in_progress(issue, _note_nodes(issue) + notes)

        return issues

    def _backfill_notes(self, issue: dict) -> list:
        cursor = ((issue.get("notes") or {}).get("pageInfo") or {}).get("endCursor")
        try:
            return self.fetch_additional_notes(issue["id"], cursor)
        except EnrichmentFailure as e:
            logger.warning(
                f"Could not backfill notes for issue {issue.get('iid')}: {e}",
                extra={"context": {"issueId": issue.get("id")}}
            )
            return []

    def _resolve_in_progress(self, issue: dict, notes: list) -> None:
        value, source = self.in_progress_chain.resolve(issue, notes)
        issue["inProgressAt"] = value
        issue["inProgressAtSource"] = source
        issue["statusChanges"] = self.classifier.parse_status_changes(notes)


def _note_nodes(issue: dict) -> list:
    return (issue.get("notes") or {}).get("nodes") or []


def _has_more_notes(issue: dict) -> bool:
    return bool(((issue.get("notes") or {}).get("pageInfo") or {}).get("hasNextPage"))
