"""Error taxonomy and transformation for GitLab API failures."""

import errno
from typing import Optional

import requests

BACKEND_NAME = "GitLab API"

RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT}


class GitLabError(Exception):
    """Base class for errors surfaced by the GitLab data layer."""

    retryable = False

    def __init__(self, message: str, context: Optional[str] = None):
        super().__init__(message)
        self.context = context


class ProtocolError(GitLabError):
    """The GraphQL response carried one or more structured errors."""

    def __init__(self, messages: list, context: str):
        self.messages = list(messages)
        joined = "; ".join(self.messages)
        super().__init__(f"{BACKEND_NAME} Error ({context}): {joined}", context)


class TransportError(GitLabError):
    """The request failed with an HTTP status and no structured errors."""

    def __init__(self, status: int, reason: Optional[str], context: str):
        self.status = status
        self.reason = reason or "Unknown error"
        super().__init__(f"HTTP {status} ({context}): {self.reason}", context)
        self.retryable = status == 429 or 500 <= status < 600


class NetworkError(GitLabError):
    """Catch-all for connection problems and anything unclassified."""

    def __init__(self, original: BaseException, context: str, retryable: bool = False):
        self.original = original
        super().__init__(f"Failed {context}: {original}", context)
        self.retryable = retryable


class ScopeNotFoundError(GitLabError):
    """A parent group, project, issue or iteration does not exist."""


class EnrichmentFailure(GitLabError):
    """Optional enrichment (timeline, extra notes, change dates) failed."""


class IterationFetchError(GitLabError):
    """Fetching data for one iteration of a batch failed."""

    def __init__(self, iteration_id: str, cause: BaseException):
        self.iteration_id = iteration_id
        super().__init__(f"Failed to fetch iteration {iteration_id}: {cause}")


class MetricsServiceError(GitLabError):
    """Metric calculation for an iteration could not be completed."""


class ErrorTransformer:
    """Converts raw transport/protocol failures into the GitLabError taxonomy."""

    @staticmethod
    def transform(error: BaseException, context: str) -> GitLabError:
        """Classify a raw failure and prefix it with the operation context.

        Args:
            error: The original exception (requests error, GraphQL error payload, ...)
            context: Operation description, e.g. "fetching incidents"

        Returns:
            A ProtocolError, TransportError or NetworkError.
        """
        if isinstance(error, GitLabError):
            return error

        messages = _structured_messages(error)
        if messages:
            return ProtocolError(messages, context)

        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
        if status:
            return TransportError(status, getattr(response, "reason", None), context)

        return NetworkError(error, context, retryable=_is_connection_reset_or_timeout(error))

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """Advisory verdict for a caller-side retry policy.

        True for connection resets, timeouts, HTTP 429 and 5xx. False for
        other 4xx, protocol errors and anything unclassified.
        """
        if isinstance(error, GitLabError):
            return bool(error.retryable)

        if _structured_messages(error):
            return False

        status = getattr(getattr(error, "response", None), "status_code", None)
        if status:
            return status == 429 or 500 <= status < 600

        return _is_connection_reset_or_timeout(error)


class GraphQLResponseError(Exception):
    """Raw GraphQL error payload, before transformation."""

    def __init__(self, errors: list):
        self.errors = errors
        super().__init__("; ".join(_error_message(e) for e in errors))


def _error_message(entry) -> str:
    if isinstance(entry, dict):
        return str(entry.get("message", entry))
    return str(entry)


def _structured_messages(error: BaseException) -> list:
    errors = getattr(error, "errors", None)
    if not errors:
        response = getattr(error, "response", None)
        if response is not None:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return [_error_message(e) for e in errors]
    return []


def _is_connection_reset_or_timeout(error: BaseException) -> bool:
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))

        if isinstance(current, (requests.exceptions.Timeout, ConnectionResetError, TimeoutError)):
            return True
        if getattr(current, "errno", None) in RETRYABLE_ERRNOS:
            return True
        if getattr(current, "code", None) in ("ECONNRESET", "ETIMEDOUT"):
            return True

        pending.extend(arg for arg in getattr(current, "args", ()) if isinstance(arg, BaseException))
        pending.append(current.__cause__)
        pending.append(current.__context__)
    return False
