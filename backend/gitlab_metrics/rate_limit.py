"""Cooperative delays between paginated GitLab requests."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

# Per-resource page delays in milliseconds
ISSUE_PAGE_DELAY_MS = 100
INCIDENT_PAGE_DELAY_MS = 100
MERGE_REQUEST_PAGE_DELAY_MS = 100
PROJECT_PAGE_DELAY_MS = 100
PIPELINE_PAGE_DELAY_MS = 50


class RateLimitManager:
    """Pauses the calling worker between pages to stay under GitLab rate limits."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            sleep: Function used to block, in seconds (injectable for tests)
        """
        self._sleep = sleep

    def delay(self, ms: int) -> None:
        """Block for the given number of milliseconds."""
        logger.debug(f"Rate limit: waiting {ms}ms", extra={"context": {"delayMs": ms}})
        self._sleep(ms / 1000.0)
