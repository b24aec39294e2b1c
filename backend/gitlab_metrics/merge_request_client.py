"""Client for merge requests and commits."""

import logging

from gitlab_metrics.errors import ScopeNotFoundError
from gitlab_metrics.pagination import connection, paginate
from gitlab_metrics.rate_limit import MERGE_REQUEST_PAGE_DELAY_MS

logger = logging.getLogger(__name__)

GROUP_MERGE_REQUESTS_QUERY = """
query getGroupMergeRequests($fullPath: ID!, $after: String, $mergedAfter: Time, $mergedBefore: Time) {
  group(fullPath: $fullPath) {
    id
    mergeRequests(state: merged, first: 100, after: $after,
                  mergedAfter: $mergedAfter, mergedBefore: $mergedBefore, includeSubgroups: true) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        iid
        title
        state
        createdAt
        mergedAt
        targetBranch
        sourceBranch
        webUrl
        author { username name }
        project { fullPath name }
        commits { nodes { id sha committedDate } }
      }
    }
  }
}
"""

MERGE_REQUEST_QUERY = """
query getMergeRequest($fullPath: ID!, $iid: String!) {
  project(fullPath: $fullPath) {
    mergeRequest(iid: $iid) {
      id
      iid
      title
      state
      mergedAt
      createdAt
      targetBranch
      sourceBranch
      webUrl
    }
  }
}
"""

COMMIT_QUERY = """
query getCommit($fullPath: ID!, $sha: String!) {
  project(fullPath: $fullPath) {
    repository {
      commit(ref: $sha) {
        id
        sha
        title
        committedDate
        webUrl
      }
    }
  }
}
"""


class MergeRequestClient:
    """Fetches merged changes for an iteration window and single change records."""

    def __init__(self, executor, rate_limiter, group_path: str):
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.group_path = group_path

    def fetch_merge_requests_for_group(self, start_date: str, end_date: str) -> list:
        """Fetch merge requests merged between start_date and end_date.

        Args:
            start_date: ISO timestamp, lower bound for mergedAt
            end_date: ISO timestamp, upper bound for mergedAt

        Returns:
            List of merge request dicts including commits
        """
        logger.debug(
            "Querying merged MRs from group",
            extra={"context": {"startDate": start_date, "endDate": end_date}}
        )
        merge_requests = paginate(
            self.executor,
            self.rate_limiter,
            GROUP_MERGE_REQUESTS_QUERY,
            {"fullPath": self.group_path, "mergedAfter": start_date, "mergedBefore": end_date},
            connection("group", "mergeRequests", scope_label=self.group_path),
            "fetching merge requests",
            delay_ms=MERGE_REQUEST_PAGE_DELAY_MS,
        )
        logger.debug(
            f"Found {len(merge_requests)} merged MRs in date range",
            extra={"context": {"count": len(merge_requests)}}
        )
        return merge_requests

    def fetch_merge_request_details(self, project_path: str, iid: str) -> dict:
        data = self.executor.execute(
            MERGE_REQUEST_QUERY,
            {"fullPath": project_path, "iid": str(iid)},
            f"fetching MR !{iid}"
        )
        merge_request = (data.get("project") or {}).get("mergeRequest")
        if not merge_request:
            raise ScopeNotFoundError(
                f"Merge request !{iid} not found in project {project_path}",
                f"fetching MR !{iid}"
            )
        return merge_request

    def fetch_commit_details(self, project_path: str, sha: str) -> dict:
        context = f"fetching commit {sha[:8]}"
        data = self.executor.execute(COMMIT_QUERY, {"fullPath": project_path, "sha": sha}, context)
        commit = ((data.get("project") or {}).get("repository") or {}).get("commit")
        if not commit:
            raise ScopeNotFoundError(f"Commit {sha} not found in project {project_path}", context)
        return commit
