"""Metric entity: computed delivery metrics for one iteration."""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Optional


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    return f"metric-{uuid.uuid4().hex[:12]}"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


REQUIRED_FIELDS = ("iteration_id", "iteration_title", "start_date", "end_date")


@dataclass(frozen=True)
class Metric:
    iteration_id: str
    iteration_title: str
    start_date: str
    end_date: str
    velocity_points: float = 0
    velocity_stories: int = 0
    cycle_time_avg: float = 0
    cycle_time_p50: float = 0
    cycle_time_p90: float = 0
    lead_time_avg: float = 0
    lead_time_p50: float = 0
    lead_time_p90: float = 0
    deployment_frequency: float = 0
    mttr_avg: float = 0
    change_failure_rate: float = 0
    issue_count: int = 0
    closed_issue_count: int = 0
    mr_count: int = 0
    deployment_count: int = 0
    incident_count: int = 0
    raw_data: Optional[dict] = field(default=None, compare=False, repr=False)
    id: str = field(default_factory=_generate_id)
    created_at: str = field(default_factory=_now)
    updated_at: Optional[str] = None

    def __post_init__(self):
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                raise ValueError(f"{_camel(name)} is required")

        for f in fields(self):
            if f.type not in (float, int, "float", "int"):
                continue
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"{_camel(f.name)} must be a non-negative number")

    def touched(self) -> "Metric":
        """Copy of this metric with updated_at set to now."""
        return replace(self, updated_at=_now())

    def to_dict(self) -> dict:
        """JSON-ready representation with camelCase keys."""
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "Metric":
        """Build a Metric from to_dict() output. Unknown keys are ignored."""
        kwargs = {}
        for f in fields(cls):
            key = _camel(f.name)
            if key in data and data[key] is not None:
                kwargs[f.name] = data[key]
        if "updatedAt" in data:
            kwargs["updated_at"] = data["updatedAt"]
        return cls(**kwargs)
