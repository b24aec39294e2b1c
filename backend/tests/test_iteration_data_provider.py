"""Tests for GitLabIterationDataProvider."""

import sys
import os

import pytest
from unittest.mock import Mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from gitlab_metrics.errors import IterationFetchError, ScopeNotFoundError, TransportError
from gitlab_metrics.iteration_data_provider import GitLabIterationDataProvider, IterationMetadataScope


@pytest.fixture
def gitlab_client(sample_iterations):
    client = Mock()
    client.fetch_iterations.return_value = sample_iterations
    client.fetch_iteration_issues.side_effect = lambda iteration_id: [{"iid": iteration_id}]
    client.fetch_merge_requests_for_group.return_value = []
    client.fetch_incidents.return_value = []
    client.fetch_pipelines_for_group.return_value = [{"id": "p1"}]
    return client


class TestFetchIterationData:
    """Test single-iteration fetches."""

    def test_shape_and_window(self, gitlab_client):
        data = GitLabIterationDataProvider(gitlab_client).fetch_iteration_data("gid://gitlab/Iteration/1")

        assert set(data) == {"issues", "mergeRequests", "pipelines", "incidents", "iteration"}
        assert data["iteration"] == {
            "id": "gid://gitlab/Iteration/1",
            "title": "Sprint 1",
            "startDate": "2025-01-01",
            "dueDate": "2025-01-10",
        }
        assert data["pipelines"] == []
        gitlab_client.fetch_incidents.assert_called_once_with("2025-01-01T00:00:00Z", "2025-01-10T00:00:00Z")
        gitlab_client.fetch_pipelines_for_group.assert_not_called()

    def test_pipelines_when_enabled(self, gitlab_client):
        provider = GitLabIterationDataProvider(gitlab_client, fetch_pipelines=True, pipeline_ref="release")

        data = provider.fetch_iteration_data("gid://gitlab/Iteration/1")

        assert data["pipelines"] == [{"id": "p1"}]
        gitlab_client.fetch_pipelines_for_group.assert_called_once_with(
            "release", "2025-01-01T00:00:00Z", "2025-01-10T00:00:00Z"
        )

    def test_unknown_iteration(self, gitlab_client):
        """A missing iteration is a scope failure, not a placeholder sprint."""
        with pytest.raises(IterationFetchError) as exc_info:
            GitLabIterationDataProvider(gitlab_client).fetch_iteration_data("gid://gitlab/Iteration/404")

        assert isinstance(exc_info.value.__cause__, ScopeNotFoundError)
        assert "gid://gitlab/Iteration/404" in str(exc_info.value)

    def test_cache_hit_skips_gitlab(self, gitlab_client):
        cache = Mock()
        cache.has.return_value = True
        cache.get.return_value = {"cached": True}

        data = GitLabIterationDataProvider(gitlab_client, cache=cache).fetch_iteration_data("gid://gitlab/Iteration/1")

        assert data == {"cached": True}
        gitlab_client.fetch_iterations.assert_not_called()

    def test_cache_errors_fall_through(self, gitlab_client):
        """Broken caches never abort a fetch."""
        cache = Mock()
        cache.has.side_effect = OSError("disk gone")
        cache.set.side_effect = OSError("disk gone")

        data = GitLabIterationDataProvider(gitlab_client, cache=cache).fetch_iteration_data("gid://gitlab/Iteration/1")

        assert data["iteration"]["title"] == "Sprint 1"
        cache.set.assert_called_once()


class TestFetchMultipleIterations:
    """Test batched fetches."""

    @pytest.mark.parametrize("bad_input", [[], None, "gid://gitlab/Iteration/1", ()])
    def test_rejects_invalid_input(self, gitlab_client, bad_input):
        with pytest.raises(ValueError, match="iterationIds must be a non-empty array"):
            GitLabIterationDataProvider(gitlab_client).fetch_multiple_iterations(bad_input)

    def test_metadata_fetched_once_results_in_input_order(self, gitlab_client):
        ids = ["gid://gitlab/Iteration/2", "gid://gitlab/Iteration/1"]

        results = GitLabIterationDataProvider(gitlab_client).fetch_multiple_iterations(ids)

        assert gitlab_client.fetch_iterations.call_count == 1
        assert [r["iteration"]["id"] for r in results] == ids
        assert [r["issues"][0]["iid"] for r in results] == ids

    def test_mixes_cached_and_fresh(self, gitlab_client):
        cache = Mock()
        cache.has.side_effect = lambda iteration_id: iteration_id == "gid://gitlab/Iteration/2"
        cache.get.return_value = {"iteration": {"id": "gid://gitlab/Iteration/2"}, "cached": True}

        results = GitLabIterationDataProvider(gitlab_client, cache=cache).fetch_multiple_iterations(
            ["gid://gitlab/Iteration/1", "gid://gitlab/Iteration/2"]
        )

        assert "cached" not in results[0]
        assert results[1]["cached"] is True
        gitlab_client.fetch_iteration_issues.assert_called_once_with("gid://gitlab/Iteration/1")
        cache.set.assert_called_once()

    def test_failure_names_iteration(self, gitlab_client):
        def issues(iteration_id):
            if iteration_id == "gid://gitlab/Iteration/2":
                raise TransportError(500, "Server Error", "fetching iteration issues")
            return []
        gitlab_client.fetch_iteration_issues.side_effect = issues

        with pytest.raises(IterationFetchError) as exc_info:
            GitLabIterationDataProvider(gitlab_client).fetch_multiple_iterations(
                ["gid://gitlab/Iteration/1", "gid://gitlab/Iteration/2"]
            )

        assert exc_info.value.iteration_id == "gid://gitlab/Iteration/2"
        assert "HTTP 500" in str(exc_info.value)


class TestIterationMetadataScope:
    def test_fetches_once(self, sample_iterations):
        fetch = Mock(return_value=sample_iterations)
        scope = IterationMetadataScope(fetch)

        assert scope.get("gid://gitlab/Iteration/1")["title"] == "Sprint 1"
        assert scope.get("gid://gitlab/Iteration/2")["title"] == "Sprint 2"
        fetch.assert_called_once()

    def test_separate_scopes_do_not_share(self, sample_iterations):
        fetch = Mock(return_value=sample_iterations)

        IterationMetadataScope(fetch).get("gid://gitlab/Iteration/1")
        IterationMetadataScope(fetch).get("gid://gitlab/Iteration/1")

        assert fetch.call_count == 2

    def test_failed_fetch_not_repeated(self):
        fetch = Mock(side_effect=TransportError(502, "Bad Gateway", "fetching iterations"))
        scope = IterationMetadataScope(fetch)

        for iteration_id in ("gid://gitlab/Iteration/1", "gid://gitlab/Iteration/2"):
            with pytest.raises(TransportError):
                scope.get(iteration_id)

        fetch.assert_called_once()

    def test_batch_metadata_failure_fetched_once(self, gitlab_client):
        """Every worker of a batch sees the same metadata failure."""
        gitlab_client.fetch_iterations.side_effect = TransportError(502, "Bad Gateway", "fetching iterations")
        ids = [f"gid://gitlab/Iteration/{n}" for n in range(1, 5)]

        with pytest.raises(IterationFetchError) as exc_info:
            GitLabIterationDataProvider(gitlab_client).fetch_multiple_iterations(ids)

        assert gitlab_client.fetch_iterations.call_count == 1
        assert exc_info.value.iteration_id == "gid://gitlab/Iteration/1"
