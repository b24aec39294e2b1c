"""Configuration loading: environment variables overlaid by an optional JSON file."""

import json
import logging
import os

from gitlab_metrics.calculators import DEPLOYMENT_TARGET_BRANCHES
from gitlab_metrics.deployment_client import DEFAULT_PIPELINE_REF
from gitlab_metrics.graphql_executor import DEFAULT_GITLAB_URL
from gitlab_metrics.incident_client import INCIDENT_LOOKBACK_DAYS

logger = logging.getLogger(__name__)

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DEFAULT_CONFIG_PATH = os.path.join(BACKEND_DIR, "config", "metrics-config.json")

# JSON file keys -> config keys
FILE_KEYS = {
    "gitlabUrl": "gitlab_url",
    "projectPath": "project_path",
    "metricsDataDir": "metrics_data_dir",
    "iterationCacheDir": "iteration_cache_dir",
    "incidentLookbackDays": "incident_lookback_days",
    "fetchPipelines": "fetch_pipelines",
    "pipelineRef": "pipeline_ref",
    "deploymentTargetBranches": "deployment_target_branches",
    "logLevel": "log_level",
    "logJson": "log_json",
}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}")
        return default


def _env_list(name: str, default) -> list:
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(config_path: str = None) -> dict:
    """Build the service configuration.

    Environment variables give the base values. Keys present in the JSON
    config file override them. A missing file is fine; a malformed one is
    logged and ignored. The token is only ever read from the environment.

    Args:
        config_path: JSON config file (defaults to backend/config/metrics-config.json)

    Returns:
        Dict of snake_case config keys
    """
    config = {
        "gitlab_url": os.environ.get("GITLAB_URL", DEFAULT_GITLAB_URL),
        "gitlab_token": os.environ.get("GITLAB_TOKEN"),
        "project_path": os.environ.get("GITLAB_PROJECT_PATH"),
        "metrics_data_dir": os.environ.get("METRICS_DATA_DIR", os.path.join(BACKEND_DIR, "data")),
        "iteration_cache_dir": os.environ.get("ITERATION_CACHE_DIR"),
        "incident_lookback_days": _env_int("INCIDENT_LOOKBACK_DAYS", INCIDENT_LOOKBACK_DAYS),
        "fetch_pipelines": _env_bool("GITLAB_FETCH_PIPELINES"),
        "pipeline_ref": os.environ.get("GITLAB_PIPELINE_REF", DEFAULT_PIPELINE_REF),
        "deployment_target_branches": _env_list("GITLAB_DEPLOYMENT_BRANCHES", DEPLOYMENT_TARGET_BRANCHES),
        "log_level": os.environ.get("LOG_LEVEL", "INFO"),
        "log_json": _env_bool("LOG_JSON"),
    }

    config_path = config_path or DEFAULT_CONFIG_PATH
    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                file_config = json.load(f)
            for file_key, config_key in FILE_KEYS.items():
                if file_key in file_config:
                    config[config_key] = file_config[file_key]
            logger.info(f"Loaded metrics config from {config_path}")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load metrics config: {e}")
    else:
        logger.info("No metrics-config.json found, using environment only")

    return config
