"""Shared fixtures for GitLab sprint metrics tests."""

import os
import sys
import threading

import pytest
from unittest.mock import Mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def page(nodes, has_next=False, cursor=None):
    """A GraphQL connection page."""
    return {
        "nodes": nodes,
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
    }


def status_note(status, created_at, note_id="n"):
    """A work-item status system note."""
    return {
        "id": note_id,
        "body": f"set status to **{status}**",
        "system": True,
        "systemNoteMetadata": {"action": "work_item_status"},
        "createdAt": created_at,
    }


def timeline_event(occurred_at, tags, note=""):
    return {
        "occurredAt": occurred_at,
        "note": note,
        "timelineEventTags": {"nodes": [{"name": t} for t in tags]},
    }


class FakeExecutor:
    """Scripted stand-in for GraphQLExecutor.

    `handler(query, variables, context)` returns the `data` dict for a
    call (or raises). Calls are recorded in order, thread-safely.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, query, variables=None, context="executing query"):
        with self._lock:
            self.calls.append({"query": query, "variables": dict(variables or {}), "context": context})
        return self.handler(query, variables or {}, context)

    def calls_for(self, context):
        return [c for c in self.calls if c["context"] == context]


def sequence(*responses):
    """Handler returning responses in order, one per call."""
    remaining = list(responses)
    lock = threading.Lock()

    def handler(query, variables, context):
        with lock:
            response = remaining.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    return handler


@pytest.fixture
def rate_limiter():
    """Rate limiter whose delay() only records calls."""
    return Mock()


@pytest.fixture
def sample_iteration():
    return {
        "id": "gid://gitlab/Iteration/1",
        "iid": "1",
        "title": "Sprint 1",
        "state": "closed",
        "startDate": "2025-01-01",
        "dueDate": "2025-01-10",
        "webUrl": "https://gitlab.com/groups/acme/-/iterations/1",
    }


@pytest.fixture
def sample_iterations(sample_iteration):
    return [
        sample_iteration,
        {
            "id": "gid://gitlab/Iteration/2",
            "iid": "2",
            "title": "Sprint 2",
            "state": "current",
            "startDate": "2025-01-11",
            "dueDate": "2025-01-24",
        },
    ]


@pytest.fixture
def sample_closed_issue():
    return {
        "id": "gid://gitlab/Issue/101",
        "iid": "101",
        "title": "Implement login",
        "state": "closed",
        "weight": 3,
        "createdAt": "2025-01-01T09:00:00Z",
        "closedAt": "2025-01-05T09:00:00Z",
        "notes": page([
            status_note("To do", "2025-01-01T10:00:00Z", "n1"),
            status_note("In progress", "2025-01-02T09:00:00Z", "n2"),
            status_note("Done", "2025-01-05T09:00:00Z", "n3"),
        ]),
    }


@pytest.fixture
def sample_merge_request():
    return {
        "id": "gid://gitlab/MergeRequest/7",
        "iid": "7",
        "title": "Add login",
        "state": "merged",
        "createdAt": "2025-01-01T00:00:00Z",
        "mergedAt": "2025-01-02T00:00:00Z",
        "sourceBranch": "feature/login",
        "targetBranch": "main",
        "project": {"fullPath": "acme/web"},
        "commits": {"nodes": []},
    }


@pytest.fixture
def metrics_config(tmp_path):
    """App config with credentials and a temporary data directory."""
    return {
        "gitlab_url": "https://gitlab.example.com",
        "gitlab_token": "config-token",
        "project_path": "acme",
        "metrics_data_dir": str(tmp_path / "data"),
        "iteration_cache_dir": None,
        "incident_lookback_days": 60,
        "fetch_pipelines": False,
        "pipeline_ref": "main",
        "deployment_target_branches": ["main", "master"],
        "log_level": "INFO",
        "log_json": False,
    }


@pytest.fixture
def app(metrics_config):
    """Create Flask test app."""
    from metrics_app import create_app
    app = create_app(metrics_config)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
