"""Delivery metric calculators.

All functions are pure: they take the enriched record dicts produced by
the GitLab clients and return plain numbers or dicts of numbers.

Percentiles use the nearest-rank method: values are sorted ascending and
P_k is the value at index ceil(k/100 * n) - 1. No interpolation is done,
so a reported percentile is always an observed duration. Equal durations
are indistinguishable, so ties need no further ordering.
"""

import math
from datetime import datetime
from typing import Iterable, Optional, Union

from gitlab_metrics.dates import DAY, days_between, hours_between, parse_datetime, within

DateLike = Union[str, datetime, None]

# Merges into these branches count as deployments
DEPLOYMENT_TARGET_BRANCHES = ("main", "master")


def percentile(values: list, k: float) -> float:
    """Nearest-rank percentile. Empty input returns 0."""
    if not values:
        return 0
    ordered = sorted(values)
    rank = max(math.ceil(k / 100 * len(ordered)) - 1, 0)
    return ordered[min(rank, len(ordered) - 1)]


def summarize_durations(values: list) -> dict:
    """Average, median and 90th percentile of a set of durations.

    Returns:
        {"avg": float, "p50": float, "p90": float}; all zeros when empty
    """
    if not values:
        return {"avg": 0, "p50": 0, "p90": 0}
    return {
        "avg": sum(values) / len(values),
        "p50": percentile(values, 50),
        "p90": percentile(values, 90),
    }


def iteration_days(start_date: DateLike, end_date: DateLike) -> int:
    """Iteration length in days, counting both endpoints."""
    start = parse_datetime(start_date)
    end = parse_datetime(end_date)
    if start is None or end is None or end < start:
        return 0
    return math.ceil((end - start) / DAY) + 1


def _closed(issues: list) -> list:
    return [i for i in issues if i.get("state") == "closed"]


def calculate_velocity(issues: list) -> dict:
    """Story points and story count completed in the iteration.

    Issues without a weight count as 0 points.
    """
    closed = _closed(issues)
    return {
        "points": sum(i.get("weight") or 0 for i in closed),
        "stories": len(closed),
    }


def calculate_throughput(issues: list) -> dict:
    return {
        "issueCount": len(issues),
        "closedCount": len(_closed(issues)),
    }


def cycle_time_days(issue: dict) -> Optional[float]:
    """Days from in-progress (or creation) to closure; None when not computable."""
    start = parse_datetime(issue.get("inProgressAt") or issue.get("createdAt"))
    end = parse_datetime(issue.get("closedAt"))
    if start is None or end is None or end < start:
        return None
    return days_between(start, end)


def calculate_cycle_time(issues: list) -> dict:
    durations = [d for d in (cycle_time_days(i) for i in _closed(issues)) if d is not None]
    return summarize_durations(durations)


def lead_time_days(merge_request: dict) -> Optional[float]:
    """Days from the first commit (or MR creation) to merge."""
    commits = (merge_request.get("commits") or {}).get("nodes") or []
    commit_dates = [d for d in (parse_datetime(c.get("committedDate")) for c in commits) if d is not None]

    start = min(commit_dates) if commit_dates else parse_datetime(merge_request.get("createdAt"))
    end = parse_datetime(merge_request.get("mergedAt"))
    if start is None or end is None or end < start:
        return None
    return days_between(start, end)


def calculate_lead_time(merge_requests: list) -> dict:
    merged = [mr for mr in merge_requests if mr.get("mergedAt")]
    durations = [d for d in (lead_time_days(mr) for mr in merged) if d is not None]
    return summarize_durations(durations)


def is_deployment(merge_request: dict, target_branches: Iterable[str] = DEPLOYMENT_TARGET_BRANCHES) -> bool:
    """A merged change into one of the deployment branches (case-insensitive)."""
    if merge_request.get("state") != "merged":
        return False
    branches = {b.lower() for b in target_branches}
    return (merge_request.get("targetBranch") or "").lower() in branches


def count_deployments(merge_requests: list, target_branches: Iterable[str] = DEPLOYMENT_TARGET_BRANCHES) -> int:
    """Merged changes into the deployment branches stand in for deployments."""
    return sum(1 for mr in merge_requests if is_deployment(mr, target_branches))


def calculate_deployment_frequency(merge_requests: list, start_date: DateLike, end_date: DateLike,
                                   target_branches: Iterable[str] = DEPLOYMENT_TARGET_BRANCHES) -> float:
    """Deployments per day over the inclusive iteration length."""
    days = iteration_days(start_date, end_date)
    if days == 0:
        return 0
    return count_deployments(merge_requests, target_branches) / days


def calculate_mttr(incidents: list) -> float:
    """Mean hours from actual start to actual end.

    Incidents missing either endpoint are excluded.
    """
    durations = []
    for incident in incidents:
        start = parse_datetime(incident.get("actualStartTime"))
        end = parse_datetime(incident.get("actualEndTime"))
        if start is None or end is None or end < start:
            continue
        durations.append(hours_between(start, end))

    if not durations:
        return 0
    return sum(durations) / len(durations)


def calculate_change_failure_rate(incidents: list, deployment_count: int,
                                  start_date: DateLike, end_date: DateLike) -> float:
    """Percentage of deployments that caused an incident.

    An incident counts when its resolved changeDate falls inside the
    iteration. Zero deployments yields 0.
    """
    if not deployment_count:
        return 0

    start = parse_datetime(start_date)
    end = parse_datetime(end_date)
    if start is None or end is None:
        return 0

    failures = sum(
        1 for incident in incidents
        if within(parse_datetime(incident.get("changeDate")), start, end)
    )
    return failures / deployment_count * 100
