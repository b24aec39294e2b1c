"""Iteration data provider: everything the calculators need for an iteration."""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from gitlab_metrics.dates import parse_datetime, to_iso
from gitlab_metrics.deployment_client import DEFAULT_PIPELINE_REF
from gitlab_metrics.errors import IterationFetchError, ScopeNotFoundError
from gitlab_metrics.repositories import IterationCache, NullIterationCache

logger = logging.getLogger(__name__)


class IterationDataProvider(ABC):
    @abstractmethod
    def fetch_iteration_data(self, iteration_id: str) -> dict:
        """Return {issues, mergeRequests, pipelines, incidents, iteration}."""

    @abstractmethod
    def fetch_multiple_iterations(self, iteration_ids: list) -> list:
        """Return one fetch_iteration_data() result per id, in input order."""


class IterationMetadataScope:
    """Iteration list fetched at most once for the lifetime of the scope.

    A scope is created per provider call and handed to every worker of
    that call, so concurrent batches never share metadata. A failed fetch
    is remembered and re-raised to every later caller.
    """

    def __init__(self, fetch_iterations: Callable[[], list]):
        self._fetch_iterations = fetch_iterations
        self._lock = threading.Lock()
        self._by_id = None
        self._error = None

    def get(self, iteration_id: str) -> dict:
        """Metadata for iteration_id.

        Raises:
            ScopeNotFoundError: If the iteration is not in the group's list
        """
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._by_id is None:
                try:
                    self._by_id = {it["id"]: it for it in self._fetch_iterations()}
                except Exception as e:
                    self._error = e
                    raise
        metadata = self._by_id.get(iteration_id)
        if metadata is None:
            raise ScopeNotFoundError(f"Iteration not found: {iteration_id}", "fetching iterations")
        return metadata


class GitLabIterationDataProvider(IterationDataProvider):
    """Iteration data assembled from the GitLab client, with an optional cache."""

    def __init__(self, gitlab_client, cache: Optional[IterationCache] = None,
                 fetch_pipelines: bool = False, pipeline_ref: str = DEFAULT_PIPELINE_REF,
                 max_workers: int = 4):
        self.gitlab_client = gitlab_client
        self.cache = cache or NullIterationCache()
        self.fetch_pipelines = fetch_pipelines
        self.pipeline_ref = pipeline_ref
        self.max_workers = max_workers

    def fetch_iteration_data(self, iteration_id: str) -> dict:
        """Fetch (or load from cache) the data for one iteration.

        Raises:
            IterationFetchError: If any primary fetch for the iteration fails
        """
        cached = self._cache_get(iteration_id)
        if cached is not None:
            return cached

        scope = IterationMetadataScope(self.gitlab_client.fetch_iterations)
        try:
            data = self._fetch_fresh(iteration_id, scope)
        except Exception as e:
            raise IterationFetchError(iteration_id, e) from e

        self._cache_set(iteration_id, data)
        return data

    def fetch_multiple_iterations(self, iteration_ids: list) -> list:
        """Fetch several iterations with one metadata fetch.

        Cached iterations are served from the cache; the rest are fetched
        concurrently. Results come back in input order.

        Raises:
            ValueError: If iteration_ids is not a non-empty list
            IterationFetchError: Naming the first failing iteration in input order
        """
        if not isinstance(iteration_ids, (list, tuple)) or len(iteration_ids) == 0:
            raise ValueError("iterationIds must be a non-empty array")

        logger.info(
            f"Fetching {len(iteration_ids)} iterations",
            extra={"context": {"iterationIds": list(iteration_ids)}}
        )

        results = {}
        misses = []
        for iteration_id in iteration_ids:
            if iteration_id in results or iteration_id in misses:
                continue
            cached = self._cache_get(iteration_id)
            if cached is not None:
                results[iteration_id] = cached
            else:
                misses.append(iteration_id)

        if misses:
            scope = IterationMetadataScope(self.gitlab_client.fetch_iterations)
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {
                    iteration_id: pool.submit(self._fetch_fresh, iteration_id, scope)
                    for iteration_id in misses
                }
                errors = {}
                for iteration_id, future in futures.items():
                    try:
                        results[iteration_id] = future.result()
                    except Exception as e:
                        errors[iteration_id] = e

            for iteration_id in misses:
                if iteration_id in errors:
                    raise IterationFetchError(iteration_id, errors[iteration_id]) from errors[iteration_id]

            for iteration_id in misses:
                self._cache_set(iteration_id, results[iteration_id])

        return [results[iteration_id] for iteration_id in iteration_ids]

    def _fetch_fresh(self, iteration_id: str, scope: IterationMetadataScope) -> dict:
        metadata = scope.get(iteration_id)
        start = to_iso(parse_datetime(metadata.get("startDate")))
        end = to_iso(parse_datetime(metadata.get("dueDate")))

        logger.info(
            f"Fetching data for iteration {metadata.get('title')}",
            extra={"context": {"iterationId": iteration_id, "startDate": start, "endDate": end}}
        )

        client = self.gitlab_client
        with ThreadPoolExecutor(max_workers=4) as pool:
            issues = pool.submit(client.fetch_iteration_issues, iteration_id)
            merge_requests = pool.submit(client.fetch_merge_requests_for_group, start, end)
            incidents = pool.submit(client.fetch_incidents, start, end)
            pipelines = pool.submit(client.fetch_pipelines_for_group, self.pipeline_ref, start, end) \
                if self.fetch_pipelines else None

            return {
                "issues": issues.result(),
                "mergeRequests": merge_requests.result(),
                "pipelines": pipelines.result() if pipelines else [],
                "incidents": incidents.result(),
                "iteration": {
                    "id": metadata.get("id", iteration_id),
                    "title": metadata.get("title"),
                    "startDate": metadata.get("startDate"),
                    "dueDate": metadata.get("dueDate"),
                },
            }

    def _cache_get(self, iteration_id: str) -> Optional[dict]:
        try:
            if self.cache.has(iteration_id):
                logger.info(f"Cache hit: {iteration_id}", extra={"context": {"iterationId": iteration_id}})
                return self.cache.get(iteration_id)
        except Exception as e:
            logger.warning(
                f"Cache read failed for iteration {iteration_id}: {e}",
                extra={"context": {"iterationId": iteration_id}}
            )
            return None
        logger.debug(f"Cache miss: {iteration_id}", extra={"context": {"iterationId": iteration_id}})
        return None

    def _cache_set(self, iteration_id: str, data: dict) -> None:
        try:
            self.cache.set(iteration_id, data)
        except Exception as e:
            logger.warning(
                f"Cache write failed for iteration {iteration_id}: {e}",
                extra={"context": {"iterationId": iteration_id}}
            )
