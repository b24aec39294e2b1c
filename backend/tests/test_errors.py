"""Tests for the error taxonomy and ErrorTransformer."""

import errno
import sys
import os

import pytest
import requests
from unittest.mock import Mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from gitlab_metrics.errors import (
    ErrorTransformer,
    GraphQLResponseError,
    IterationFetchError,
    NetworkError,
    ProtocolError,
    TransportError,
)


def http_error(status, reason="Reason", body=None):
    response = Mock(status_code=status, reason=reason)
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return requests.exceptions.HTTPError(f"{status} error", response=response)


class TestTransform:
    """Test classification of raw failures."""

    def test_structured_errors_become_protocol_error(self):
        """GraphQL error lists should join messages with the context."""
        error = GraphQLResponseError([{"message": "Field missing"}, {"message": "Bad id"}])

        result = ErrorTransformer.transform(error, "fetching issues")

        assert isinstance(result, ProtocolError)
        assert str(result) == "GitLab API Error (fetching issues): Field missing; Bad id"

    def test_http_error_with_error_body_is_protocol_error(self):
        """An HTTP failure carrying structured errors is still a protocol error."""
        error = http_error(400, body={"errors": [{"message": "Syntax error"}]})

        result = ErrorTransformer.transform(error, "fetching issues")

        assert isinstance(result, ProtocolError)
        assert "Syntax error" in str(result)

    def test_status_only_becomes_transport_error(self):
        """HTTP status without structured errors should be a transport error."""
        result = ErrorTransformer.transform(http_error(503, "Service Unavailable"), "fetching incidents")

        assert isinstance(result, TransportError)
        assert str(result) == "HTTP 503 (fetching incidents): Service Unavailable"

    def test_missing_reason_uses_unknown_error(self):
        result = ErrorTransformer.transform(http_error(502, reason=None), "fetching incidents")
        assert str(result) == "HTTP 502 (fetching incidents): Unknown error"

    def test_anything_else_becomes_network_error(self):
        """Unclassified failures should wrap the original message."""
        result = ErrorTransformer.transform(RuntimeError("socket closed"), "fetching iterations")

        assert isinstance(result, NetworkError)
        assert str(result) == "Failed fetching iterations: socket closed"
        assert result.context == "fetching iterations"


class TestIsRetryable:
    """Test retryability verdicts."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 599])
    def test_retryable_statuses(self, status):
        assert ErrorTransformer.is_retryable(http_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_not_retryable(self, status):
        assert ErrorTransformer.is_retryable(http_error(status)) is False

    def test_protocol_errors_not_retryable(self):
        error = GraphQLResponseError([{"message": "Internal"}])
        assert ErrorTransformer.is_retryable(error) is False
        assert ErrorTransformer.is_retryable(ErrorTransformer.transform(error, "x")) is False

    def test_timeout_is_retryable(self):
        assert ErrorTransformer.is_retryable(requests.exceptions.ReadTimeout("timed out")) is True

    def test_connection_reset_in_cause_chain_is_retryable(self):
        """Connection resets wrapped by requests should be found via the cause chain."""
        try:
            try:
                raise ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
            except ConnectionResetError as reset:
                raise requests.exceptions.ConnectionError("aborted") from reset
        except requests.exceptions.ConnectionError as e:
            error = e

        assert ErrorTransformer.is_retryable(error) is True
        assert ErrorTransformer.transform(error, "fetching issues").retryable is True

    def test_generic_error_not_retryable(self):
        assert ErrorTransformer.is_retryable(ValueError("bad")) is False

    def test_transformed_transport_error_keeps_verdict(self):
        transformed = ErrorTransformer.transform(http_error(429, "Too Many Requests"), "x")
        assert ErrorTransformer.is_retryable(transformed) is True


class TestIterationFetchError:
    def test_names_iteration(self):
        error = IterationFetchError("gid://gitlab/Iteration/9", RuntimeError("boom"))
        assert str(error) == "Failed to fetch iteration gid://gitlab/Iteration/9: boom"
        assert error.iteration_id == "gid://gitlab/Iteration/9"
