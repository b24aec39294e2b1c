"""Flask application factory."""

from flask import Flask
from flask_cors import CORS

from gitlab_metrics.structured_logging import setup_structured_logging
from metrics_app.config import load_config


def create_app(config: dict = None):
    """Create and configure the Flask application.

    Args:
        config: Pre-built config dict (tests); defaults to load_config()
    """
    app = Flask(__name__)

    metrics_config = config if config is not None else load_config()
    app.config["METRICS"] = metrics_config
    setup_structured_logging(metrics_config.get("log_level", "INFO"), bool(metrics_config.get("log_json")))

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "X-GitLab-Token", "X-GitLab-Url", "X-GitLab-Project-Path"
            ]
        }
    })

    # Register blueprints
    from metrics_app.api import iterations, metrics
    app.register_blueprint(iterations.bp)
    app.register_blueprint(metrics.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
