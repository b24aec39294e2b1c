"""GitLab GraphQL client facade.

Wires one executor and one rate limiter into the per-resource clients
(iterations, issues, merge requests, incidents, projects/pipelines).
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from gitlab_metrics.deployment_client import DEFAULT_PIPELINE_REF, DeploymentClient
from gitlab_metrics.errors import GitLabError
from gitlab_metrics.graphql_executor import DEFAULT_GITLAB_URL, GraphQLExecutor
from gitlab_metrics.incident_client import INCIDENT_LOOKBACK_DAYS, TIMELINE_START_OVERRIDES, IncidentClient
from gitlab_metrics.issue_client import IssueClient
from gitlab_metrics.iteration_client import IterationClient
from gitlab_metrics.merge_request_client import MergeRequestClient
from gitlab_metrics.rate_limit import RateLimitManager
from gitlab_metrics.status_notes import StatusTransitionClassifier

logger = logging.getLogger(__name__)


class GitLabClient:
    """Entry point for every GitLab read used by the metrics engine."""

    def __init__(self, token: str, project_path: str, url: str = DEFAULT_GITLAB_URL,
                 executor=None, rate_limiter=None,
                 classifier: Optional[StatusTransitionClassifier] = None,
                 incident_lookback_days: int = INCIDENT_LOOKBACK_DAYS,
                 timeline_start_overrides: bool = TIMELINE_START_OVERRIDES,
                 max_workers: int = 10):
        """
        Args:
            token: GitLab personal access token
            project_path: Group path (a project path is accepted for iterations)
            url: GitLab instance URL
            executor: Pre-built GraphQL executor (tests)
            rate_limiter: Pre-built rate limiter (tests)
        """
        if not token:
            raise ValueError("GITLAB_TOKEN is required")
        if not project_path:
            raise ValueError("GITLAB_PROJECT_PATH is required")

        self.url = url or DEFAULT_GITLAB_URL
        self.project_path = project_path
        self.max_workers = max_workers
        self.executor = executor or GraphQLExecutor(self.url, token)
        self.rate_limiter = rate_limiter or RateLimitManager()

        self.iterations = IterationClient(self.executor, self.rate_limiter, project_path)
        self.issues = IssueClient(
            self.executor, self.rate_limiter, project_path,
            classifier=classifier, max_workers=max_workers
        )
        self.merge_requests = MergeRequestClient(self.executor, self.rate_limiter, project_path)
        self.incidents = IncidentClient(
            self.executor, self.rate_limiter, project_path, self.merge_requests,
            lookback_days=incident_lookback_days,
            timeline_start_overrides=timeline_start_overrides,
            max_workers=max_workers
        )
        self.deployments = DeploymentClient(self.executor, self.rate_limiter, project_path)

    def fetch_iterations(self) -> list:
        return self.iterations.fetch_iterations()

    def fetch_iteration_issues(self, iteration_id: str) -> list:
        return self.issues.fetch_iteration_issues(iteration_id)

    def fetch_merge_requests_for_group(self, start_date: str, end_date: str) -> list:
        return self.merge_requests.fetch_merge_requests_for_group(start_date, end_date)

    def fetch_merge_request_details(self, project_path: str, iid: str) -> dict:
        return self.merge_requests.fetch_merge_request_details(project_path, iid)

    def fetch_commit_details(self, project_path: str, sha: str) -> dict:
        return self.merge_requests.fetch_commit_details(project_path, sha)

    def fetch_incidents(self, start_date: str, end_date: str) -> list:
        return self.incidents.fetch_incidents(start_date, end_date)

    def fetch_group_projects(self) -> list:
        return self.deployments.fetch_group_projects()

    def fetch_pipelines_for_project(self, project_path: str, ref: str = DEFAULT_PIPELINE_REF,
                                    start_date: Optional[str] = None,
                                    end_date: Optional[str] = None) -> list:
        return self.deployments.fetch_pipelines_for_project(project_path, ref, start_date, end_date)

    def fetch_pipelines_for_group(self, ref: str = DEFAULT_PIPELINE_REF,
                                  start_date: Optional[str] = None,
                                  end_date: Optional[str] = None) -> list:
        """Pipelines on `ref` across every project in the group.

        A project whose pipelines cannot be read is skipped with a warning.
        Each pipeline is tagged with its projectPath.
        """
        projects = self.fetch_group_projects()

        def fetch(project_path):
            return self.fetch_pipelines_for_project(project_path, ref, start_date, end_date)

        pipelines_by_project = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(fetch, p["fullPath"]): p["fullPath"] for p in projects if p.get("fullPath")}
            for future in as_completed(futures):
                project_path = futures[future]
                try:
                    pipelines_by_project[project_path] = future.result()
                except GitLabError as e:
                    logger.warning(
                        f"Failed to fetch pipelines for project {project_path}: {e}",
                        extra={"context": {"projectPath": project_path}}
                    )

        pipelines = []
        for project in projects:
            for pipeline in pipelines_by_project.get(project.get("fullPath"), []):
                pipelines.append({**pipeline, "projectPath": project["fullPath"]})
        return pipelines
