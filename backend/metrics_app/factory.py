"""Builds the metrics service from configuration and per-request credentials."""

from flask import current_app, request

from gitlab_metrics.calculators import DEPLOYMENT_TARGET_BRANCHES
from gitlab_metrics.gitlab_client import GitLabClient
from gitlab_metrics.iteration_data_provider import GitLabIterationDataProvider
from gitlab_metrics.metrics_service import MetricsService
from gitlab_metrics.repositories import FileIterationCache, FileMetricsRepository, NullIterationCache


def get_gitlab_credentials():
    """GitLab credentials from request headers, falling back to app config.

    Returns:
        Tuple of (url, token, project_path); token/path may be None
    """
    config = current_app.config["METRICS"]
    url = request.headers.get("X-GitLab-Url", "").rstrip("/") or config.get("gitlab_url")
    token = request.headers.get("X-GitLab-Token") or config.get("gitlab_token")
    project_path = request.headers.get("X-GitLab-Project-Path") or config.get("project_path")
    return url, token, project_path


def build_gitlab_client(url, token, project_path) -> GitLabClient:
    config = current_app.config["METRICS"]
    return GitLabClient(
        token,
        project_path,
        url=url,
        incident_lookback_days=int(config.get("incident_lookback_days")),
    )


def build_metrics_repository() -> FileMetricsRepository:
    return FileMetricsRepository(current_app.config["METRICS"].get("metrics_data_dir"))


def build_metrics_service(url, token, project_path) -> MetricsService:
    """Wire client, provider, cache and repository for one request."""
    config = current_app.config["METRICS"]
    cache_dir = config.get("iteration_cache_dir")
    provider = GitLabIterationDataProvider(
        build_gitlab_client(url, token, project_path),
        cache=FileIterationCache(cache_dir) if cache_dir else NullIterationCache(),
        fetch_pipelines=bool(config.get("fetch_pipelines")),
        pipeline_ref=config.get("pipeline_ref"),
    )
    return MetricsService(
        provider,
        build_metrics_repository(),
        deployment_target_branches=config.get("deployment_target_branches") or DEPLOYMENT_TARGET_BRANCHES,
    )
