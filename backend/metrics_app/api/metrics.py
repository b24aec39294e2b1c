"""Iteration metrics API endpoints."""

import logging

from flask import Blueprint, jsonify, request

from metrics_app.factory import build_metrics_repository, build_metrics_service, get_gitlab_credentials

logger = logging.getLogger(__name__)

bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")

# Route kind -> metric keys included in the projection
METRIC_VIEWS = {
    "velocity": ["velocityPoints", "velocityStories", "issueCount", "closedIssueCount"],
    "cycle-time": ["cycleTimeAvg", "cycleTimeP50", "cycleTimeP90"],
    "lead-time": ["leadTimeAvg", "leadTimeP50", "leadTimeP90"],
    "deployment-frequency": ["deploymentFrequency", "deploymentCount", "mrCount"],
    "mttr": ["mttrAvg", "incidentCount"],
    "change-failure-rate": ["changeFailureRate", "incidentCount", "deploymentCount"],
}

IDENTITY_KEYS = ["iterationId", "iterationTitle", "startDate", "endDate"]


def get_iteration_ids():
    """Get iteration ids from the comma-separated `iterations` query param."""
    raw = request.args.get("iterations", "")
    return [i.strip() for i in raw.split(",") if i.strip()]


def _calculate():
    """Shared request handling: credentials, ids, calculation.

    Returns:
        (metrics, None) on success or (None, error response tuple)
    """
    url, token, project_path = get_gitlab_credentials()

    if not token or not project_path:
        return None, (jsonify({"error": "Missing GitLab credentials"}), 401)

    iteration_ids = get_iteration_ids()
    if not iteration_ids:
        return None, (jsonify({"error": "Missing required query param: iterations"}), 400)

    try:
        service = build_metrics_service(url, token, project_path)
        return service.calculate_multiple_metrics(iteration_ids), None
    except ValueError as e:
        return None, (jsonify({"error": str(e)}), 400)
    except Exception as e:
        logger.error(f"Metric calculation failed: {e}", extra={"context": {"iterationIds": iteration_ids}})
        return None, (jsonify({"error": str(e)}), 500)


@bp.route("", methods=["GET"])
def get_metrics():
    """Calculate metrics for one or more iterations.

    Query params:
        - iterations: Comma-separated GitLab iteration ids

    Returns:
        - Full metric record per iteration, in request order
    """
    metrics, error = _calculate()
    if error:
        return error

    for metric in metrics:
        metric.pop("rawData", None)
    return jsonify({"data": metrics, "count": len(metrics)})


@bp.route("/saved", methods=["GET"])
def get_saved_metrics():
    """Previously calculated metrics, without raw data. No GitLab access needed."""
    metrics = [metric.to_dict() for metric in build_metrics_repository().find_all()]
    for metric in metrics:
        metric.pop("rawData", None)
    return jsonify({"data": metrics, "count": len(metrics)})


@bp.route("/saved/<metric_id>", methods=["GET"])
def get_saved_metric(metric_id):
    """A stored metric including its raw data."""
    metric = build_metrics_repository().find_by_id(metric_id)
    if metric is None:
        return jsonify({"error": f"Metric not found: {metric_id}"}), 404
    return jsonify(metric.to_dict())


@bp.route("/<kind>", methods=["GET"])
def get_metric_view(kind):
    """Single metric family per iteration (velocity, cycle-time, lead-time, ...)."""
    keys = METRIC_VIEWS.get(kind)
    if keys is None:
        return jsonify({"error": f"Unknown metric: {kind}"}), 404

    metrics, error = _calculate()
    if error:
        return error

    return jsonify({"data": [
        {key: metric.get(key) for key in IDENTITY_KEYS + keys}
        for metric in metrics
    ]})
