"""Persistence collaborators: the iteration data cache and the metrics store."""

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from gitlab_metrics.metric import Metric

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = "1.0"
METRICS_FILENAME = "metrics.json"


class IterationCache(ABC):
    """Opaque key/value store for fetched iteration data."""

    @abstractmethod
    def has(self, iteration_id: str) -> bool:
        ...

    @abstractmethod
    def get(self, iteration_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def set(self, iteration_id: str, data: dict) -> None:
        ...


class NullIterationCache(IterationCache):
    """Cache that never holds anything."""

    def has(self, iteration_id: str) -> bool:
        return False

    def get(self, iteration_id: str) -> Optional[dict]:
        return None

    def set(self, iteration_id: str, data: dict) -> None:
        return None


class FileIterationCache(IterationCache):
    """One JSON file per iteration under cache_dir. Entries never expire."""

    def __init__(self, cache_dir: str):
        self.cache_dir = os.path.abspath(cache_dir)

    def has(self, iteration_id: str) -> bool:
        return self.get(iteration_id) is not None

    def get(self, iteration_id: str) -> Optional[dict]:
        path = self._path(iteration_id)
        if not os.path.exists(path):
            return None

        with open(path, "r") as f:
            try:
                entry = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Cache file corrupted for iteration {iteration_id}: {e}") from e
        return entry.get("data")

    def set(self, iteration_id: str, data: dict) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)
        entry = {
            "version": CACHE_FORMAT_VERSION,
            "iterationId": iteration_id,
            "lastFetched": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }
        with open(self._path(iteration_id), "w") as f:
            json.dump(entry, f, indent=2)

    def _path(self, iteration_id: str) -> str:
        # gid://gitlab/Iteration/123 -> gid---gitlab-Iteration-123.json
        safe_name = re.sub(r"[^a-zA-Z0-9_-]", "-", iteration_id)
        path = os.path.abspath(os.path.join(self.cache_dir, f"{safe_name}.json"))
        if os.path.dirname(path) != self.cache_dir:
            raise ValueError("Invalid iteration ID: path traversal detected")
        return path


class MetricsRepository(ABC):
    @abstractmethod
    def save(self, metric: Metric) -> None:
        """Insert or replace the metric keyed by its id."""

    @abstractmethod
    def find_by_id(self, metric_id: str) -> Optional[Metric]:
        ...

    @abstractmethod
    def find_by_iteration_id(self, iteration_id: str) -> Optional[Metric]:
        ...

    @abstractmethod
    def find_all(self) -> list:
        ...


class FileMetricsRepository(MetricsRepository):
    """All metrics in a single JSON file keyed by metric id.

    Every read-modify-write cycle holds a lock, so saves from several
    threads of one process are applied one after another.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.file_path = os.path.join(data_dir, METRICS_FILENAME)
        self._lock = threading.Lock()

    def save(self, metric: Metric) -> None:
        with self._lock:
            all_metrics = self._load()
            all_metrics[metric.id] = metric.to_dict()
            self._write(all_metrics)
        logger.debug(
            f"Saved metric {metric.id}",
            extra={"context": {"metricId": metric.id, "iterationId": metric.iteration_id}}
        )

    def find_by_id(self, metric_id: str) -> Optional[Metric]:
        data = self._load().get(metric_id)
        return Metric.from_dict(data) if data else None

    def find_by_iteration_id(self, iteration_id: str) -> Optional[Metric]:
        for data in self._load().values():
            if data.get("iterationId") == iteration_id:
                return Metric.from_dict(data)
        return None

    def find_all(self) -> list:
        return [Metric.from_dict(data) for data in self._load().values()]

    def _load(self) -> dict:
        if not os.path.exists(self.file_path):
            return {}
        with open(self.file_path, "r") as f:
            return json.load(f)

    def _write(self, all_metrics: dict) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self.file_path, "w") as f:
            json.dump(all_metrics, f, indent=2)
