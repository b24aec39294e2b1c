"""Client for GitLab iterations (sprints)."""

import logging

from gitlab_metrics.errors import ScopeNotFoundError
from gitlab_metrics.pagination import connection, paginate
from gitlab_metrics.rate_limit import ISSUE_PAGE_DELAY_MS

logger = logging.getLogger(__name__)

ITERATIONS_QUERY = """
query getIterations($fullPath: ID!, $after: String) {
  group(fullPath: $fullPath) {
    id
    name
    iterations(first: 100, after: $after, includeAncestors: false) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        iid
        title
        description
        state
        startDate
        dueDate
        createdAt
        updatedAt
        webUrl
        iterationCadence { id title }
      }
    }
  }
}
"""


class IterationClient:
    def __init__(self, executor, rate_limiter, group_path: str):
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.group_path = group_path

    def fetch_iterations(self) -> list:
        """Fetch all iterations of the configured group.

        When the configured path is a project path (no such group), the
        parent group is tried once.

        Returns:
            List of iteration dicts

        Raises:
            ScopeNotFoundError: If neither the path nor its parent is a group
        """
        try:
            return self._fetch_for_group(self.group_path)
        except ScopeNotFoundError:
            segments = self.group_path.split("/")
            if len(segments) < 2:
                raise

        parent = "/".join(segments[:-1])
        logger.debug(f"Trying parent group {parent}", extra={"context": {"groupPath": parent}})
        try:
            return self._fetch_for_group(parent)
        except ScopeNotFoundError as e:
            raise ScopeNotFoundError(
                f"Group not found: {self.group_path}. Please check GITLAB_PROJECT_PATH",
                "fetching iterations"
            ) from e

    def _fetch_for_group(self, group_path: str) -> list:
        iterations = paginate(
            self.executor,
            self.rate_limiter,
            ITERATIONS_QUERY,
            {"fullPath": group_path},
            connection("group", "iterations", scope_label=group_path),
            "fetching iterations",
            delay_ms=ISSUE_PAGE_DELAY_MS,
        )
        if not iterations:
            logger.warning(
                f"No iterations found for group {group_path}",
                extra={"context": {"groupPath": group_path}}
            )
        logger.debug(
            f"Found {len(iterations)} iterations",
            extra={"context": {"groupPath": group_path, "count": len(iterations)}}
        )
        return iterations
