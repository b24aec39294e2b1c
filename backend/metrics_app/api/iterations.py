"""Iteration listing API endpoints."""

import logging

from flask import Blueprint, jsonify

from metrics_app.factory import build_gitlab_client, get_gitlab_credentials

logger = logging.getLogger(__name__)

bp = Blueprint("iterations", __name__, url_prefix="/api/iterations")


@bp.route("", methods=["GET"])
def get_iterations():
    """List the iterations (sprints) of the configured GitLab group.

    Returns:
        - id, iid, title, state, startDate, dueDate per iteration
    """
    url, token, project_path = get_gitlab_credentials()

    if not token or not project_path:
        return jsonify({"error": "Missing GitLab credentials"}), 401

    try:
        client = build_gitlab_client(url, token, project_path)
        iterations = client.fetch_iterations()
        return jsonify({"data": [
            {
                "id": it.get("id"),
                "iid": it.get("iid"),
                "title": it.get("title"),
                "state": it.get("state"),
                "startDate": it.get("startDate"),
                "dueDate": it.get("dueDate"),
                "webUrl": it.get("webUrl"),
            }
            for it in iterations
        ]})
    except Exception as e:
        logger.error(f"Failed to list iterations: {e}")
        return jsonify({"error": str(e)}), 500
