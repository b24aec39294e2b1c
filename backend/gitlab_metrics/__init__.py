"""GitLab sprint metrics: data fetching, correlation and calculators."""

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
