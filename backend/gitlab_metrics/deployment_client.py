"""Client for group projects and their pipelines (deployment proxies)."""

import logging
from typing import Optional

from gitlab_metrics.dates import parse_datetime, to_iso
from gitlab_metrics.pagination import connection, paginate
from gitlab_metrics.rate_limit import PIPELINE_PAGE_DELAY_MS, PROJECT_PAGE_DELAY_MS

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_REF = "main"

GROUP_PROJECTS_QUERY = """
query getGroupProjects($fullPath: ID!, $after: String) {
  group(fullPath: $fullPath) {
    id
    name
    projects(first: 100, after: $after, includeSubgroups: true) {
      pageInfo { hasNextPage endCursor }
      nodes { id fullPath name }
    }
  }
}
"""

PIPELINES_QUERY = """
query getPipelines($fullPath: ID!, $ref: String, $after: String, $updatedAfter: Time) {
  project(fullPath: $fullPath) {
    pipelines(first: 100, ref: $ref, after: $after, updatedAfter: $updatedAfter) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        iid
        status
        ref
        createdAt
        updatedAt
        finishedAt
        sha
      }
    }
  }
}
"""


class DeploymentClient:
    def __init__(self, executor, rate_limiter, group_path: str):
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.group_path = group_path

    def fetch_group_projects(self) -> list:
        """Fetch all projects in the group, including subgroups.

        Raises:
            ScopeNotFoundError: If the group does not exist
        """
        projects = paginate(
            self.executor,
            self.rate_limiter,
            GROUP_PROJECTS_QUERY,
            {"fullPath": self.group_path},
            connection("group", "projects", scope_label=self.group_path),
            "fetching group projects",
            delay_ms=PROJECT_PAGE_DELAY_MS,
        )
        logger.debug(
            f"Found {len(projects)} projects in group",
            extra={"context": {"groupPath": self.group_path, "count": len(projects)}}
        )
        return projects

    def fetch_pipelines_for_project(self, project_path: str, ref: str = DEFAULT_PIPELINE_REF,
                                    start_date: Optional[str] = None,
                                    end_date: Optional[str] = None) -> list:
        """Fetch pipelines on a ref, updated after start_date and created by end_date.

        The start bound is applied by the API (updatedAfter); the end bound
        is applied here on createdAt.

        Raises:
            ScopeNotFoundError: If the project does not exist
        """
        pipelines = paginate(
            self.executor,
            self.rate_limiter,
            PIPELINES_QUERY,
            {"fullPath": project_path, "ref": ref, "updatedAfter": to_iso(parse_datetime(start_date))},
            connection("project", "pipelines", scope_label=project_path),
            "fetching pipelines",
            delay_ms=PIPELINE_PAGE_DELAY_MS,
        )

        end = parse_datetime(end_date)
        if end is not None:
            pipelines = [
                p for p in pipelines
                if (parse_datetime(p.get("createdAt")) or end) <= end
            ]
        return pipelines
