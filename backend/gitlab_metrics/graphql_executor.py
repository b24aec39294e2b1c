"""GraphQL query execution against the GitLab API."""

import logging
from typing import Optional

import requests

from gitlab_metrics.errors import ErrorTransformer, GraphQLResponseError

logger = logging.getLogger(__name__)

DEFAULT_GITLAB_URL = "https://gitlab.com"


class GraphQLExecutor:
    """Sends query + variables to the GitLab GraphQL endpoint.

    Failures are converted by ErrorTransformer and raised with the
    caller-supplied operation context.
    """

    def __init__(self, url: str, token: str, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.url = (url or DEFAULT_GITLAB_URL).rstrip("/")
        self.endpoint = f"{self.url}/api/graphql"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def execute(self, query: str, variables: Optional[dict] = None,
                context: str = "executing query") -> dict:
        """Execute a GraphQL query and return its `data` object.

        Args:
            query: GraphQL query string
            variables: Query variables
            context: Operation description used in error messages

        Returns:
            The decoded `data` member of the response.

        Raises:
            GitLabError: ProtocolError, TransportError or NetworkError.
        """
        variables = variables or {}
        logger.debug(
            "Executing GraphQL query",
            extra={"context": {"operation": context, "queryPreview": query.strip()[:100], "variables": variables}}
        )

        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError(f"Unexpected GraphQL response body: {type(payload).__name__}")
            if payload.get("errors"):
                raise GraphQLResponseError(payload["errors"])
        except (requests.exceptions.RequestException, GraphQLResponseError, ValueError) as e:
            transformed = ErrorTransformer.transform(e, context)
            logger.error(
                f"GraphQL query failed: {transformed}",
                extra={"context": {"operation": context, "variables": variables}}
            )
            raise transformed from e

        return payload.get("data") or {}
