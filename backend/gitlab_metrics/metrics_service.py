"""Metric calculation orchestration: fetch, calculate, persist."""

import logging
from dataclasses import replace
from typing import Iterable

from gitlab_metrics import calculators
from gitlab_metrics.errors import MetricsServiceError
from gitlab_metrics.metric import Metric

logger = logging.getLogger(__name__)


def build_metric(iteration_id: str, iteration_data: dict,
                 target_branches: Iterable[str] = calculators.DEPLOYMENT_TARGET_BRANCHES) -> Metric:
    """Run every calculator over one iteration's data.

    Args:
        iteration_id: GitLab iteration global id
        iteration_data: Provider output ({issues, mergeRequests, pipelines, incidents, iteration})
        target_branches: Branches whose merges count as deployments

    Returns:
        An unsaved Metric
    """
    issues = iteration_data.get("issues") or []
    merge_requests = iteration_data.get("mergeRequests") or []
    incidents = iteration_data.get("incidents") or []
    iteration = iteration_data.get("iteration") or {}
    start_date = iteration.get("startDate")
    end_date = iteration.get("dueDate")

    velocity = calculators.calculate_velocity(issues)
    throughput = calculators.calculate_throughput(issues)
    cycle_time = calculators.calculate_cycle_time(issues)
    lead_time = calculators.calculate_lead_time(merge_requests)
    deployment_count = calculators.count_deployments(merge_requests, target_branches)

    return Metric(
        iteration_id=iteration_id,
        iteration_title=iteration.get("title"),
        start_date=start_date,
        end_date=end_date,
        velocity_points=velocity["points"],
        velocity_stories=velocity["stories"],
        cycle_time_avg=cycle_time["avg"],
        cycle_time_p50=cycle_time["p50"],
        cycle_time_p90=cycle_time["p90"],
        lead_time_avg=lead_time["avg"],
        lead_time_p50=lead_time["p50"],
        lead_time_p90=lead_time["p90"],
        deployment_frequency=calculators.calculate_deployment_frequency(
            merge_requests, start_date, end_date, target_branches
        ),
        mttr_avg=calculators.calculate_mttr(incidents),
        change_failure_rate=calculators.calculate_change_failure_rate(
            incidents, deployment_count, start_date, end_date
        ),
        issue_count=throughput["issueCount"],
        closed_issue_count=throughput["closedCount"],
        mr_count=len(merge_requests),
        deployment_count=deployment_count,
        incident_count=len(incidents),
        raw_data={
            "issues": issues,
            "mergeRequests": merge_requests,
            "incidents": incidents,
            "iteration": iteration,
        },
    )


class MetricsService:
    """Computes and stores metrics for iterations."""

    def __init__(self, data_provider, metrics_repository,
                 deployment_target_branches: Iterable[str] = calculators.DEPLOYMENT_TARGET_BRANCHES):
        self.data_provider = data_provider
        self.metrics_repository = metrics_repository
        self.deployment_target_branches = tuple(deployment_target_branches)

    def calculate_metrics(self, iteration_id: str) -> dict:
        """Calculate, save and return metrics for a single iteration.

        Raises:
            MetricsServiceError: If the iteration data cannot be fetched
        """
        try:
            iteration_data = self.data_provider.fetch_iteration_data(iteration_id)
        except Exception as e:
            raise MetricsServiceError(
                f"Failed to fetch iteration data for {iteration_id}: {e}",
                "calculating metrics"
            ) from e

        metric = build_metric(iteration_id, iteration_data, self.deployment_target_branches)
        metric = self._save(metric)
        logger.info(
            f"Calculated metrics for {metric.iteration_title}",
            extra={"context": {"iterationId": iteration_id, "metricId": metric.id}}
        )
        return metric.to_dict()

    def calculate_multiple_metrics(self, iteration_ids: list) -> list:
        """Calculate metrics for several iterations.

        Data is fetched as one batch. Metrics are saved one at a time, in
        input order.

        Raises:
            ValueError: If iteration_ids is empty or not a list
            MetricsServiceError: If the batch fetch fails
        """
        if not isinstance(iteration_ids, (list, tuple)) or len(iteration_ids) == 0:
            raise ValueError("iterationIds must be a non-empty array")

        try:
            all_iteration_data = self.data_provider.fetch_multiple_iterations(iteration_ids)
        except Exception as e:
            raise MetricsServiceError(
                f"Failed to fetch multiple iterations: {e}",
                "calculating metrics"
            ) from e

        results = []
        for iteration_id, iteration_data in zip(iteration_ids, all_iteration_data):
            metric = build_metric(iteration_id, iteration_data, self.deployment_target_branches)
            metric = self._save(metric)
            results.append(metric.to_dict())

        logger.info(
            f"Calculated metrics for {len(results)} iterations",
            extra={"context": {"iterationIds": list(iteration_ids)}}
        )
        return results

    def _save(self, metric: Metric) -> Metric:
        """Persist a metric, replacing any earlier record for the same iteration.

        A recalculated iteration keeps the stored id and created_at and
        gets a fresh updated_at.
        """
        existing = self.metrics_repository.find_by_iteration_id(metric.iteration_id)
        if existing is not None:
            metric = replace(metric, id=existing.id, created_at=existing.created_at).touched()
        self.metrics_repository.save(metric)
        return metric
