from __future__ import annotations

import os
import time
import uuid
from pathlib import Path
from typing import Optional

from flask import Flask, g, jsonify, request

from .activity_log import DEFAULT_TIMEZONE
from .auth import load_session_context
from .db import init_db
from .errors import SupportDeskError
from .observability.metrics_collector import (
    HTTP_REQUEST_DURATION,
    HTTP_REQUESTS,
    metrics_collector,
    record_http_error,
)
from .observability.structured_logger import app_logger
from .trash.manager import DEFAULT_RETENTION_DAYS


def load_config() -> dict:
    """Settings read from the environment."""
    root = Path(__file__).resolve().parents[1]
    return {
        "SECRET_KEY": os.environ.get("APP_SECRET_KEY", "dev-insecure-secret"),
        "DB_PATH": os.environ.get("APP_DB_PATH", str(root / "app.sqlite")),
        "LOG_TIMEZONE": os.environ.get("LOG_TIMEZONE", DEFAULT_TIMEZONE),
        "TRASH_RETENTION_DAYS": int(os.environ.get("TRASH_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS))),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO"),
        "LOG_FILE": os.environ.get("LOG_FILE") or None,
    }


def create_app(overrides: Optional[dict] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)

    app_logger.configure(app.config["LOG_LEVEL"], app.config["LOG_FILE"])
    init_db(app.config["DB_PATH"])

    from .auth import bp as auth_bp
    from .directory.routes import companies_bp, contacts_bp, equipment_bp
    from .monitoring_routes import monitoring_bp
    from .rma.routes import bp as rma_bp
    from .tickets.routes import bp as tickets_bp
    from .trash.routes import bp as trash_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(rma_bp)
    app.register_blueprint(companies_bp)
    app.register_blueprint(contacts_bp)
    app.register_blueprint(equipment_bp)
    app.register_blueprint(trash_bp)
    app.register_blueprint(monitoring_bp)

    # ============================================
    # OBSERVABILITY MIDDLEWARE
    # ============================================

    @app.before_request
    def before_request_observability():
        """Initialize request tracking and the session context"""
        g.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        g.start_time = time.time()
        load_session_context()

        app_logger.debug(
            f"Request started: {request.method} {request.path}",
            method=request.method,
            path=request.path,
        )

    @app.after_request
    def after_request_observability(response):
        """Record metrics after each request"""
        if hasattr(g, "start_time"):
            duration = time.time() - g.start_time
            endpoint = request.endpoint or "unknown"

            metrics_collector.observe("http_request_duration_seconds", duration)
            HTTP_REQUEST_DURATION.labels(endpoint=endpoint).observe(duration)
            HTTP_REQUESTS.labels(
                endpoint=endpoint, method=request.method, status=str(response.status_code)
            ).inc()

            app_logger.info(
                f"Request completed: {request.method} {request.path}",
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )

            if response.status_code >= 400:
                record_http_error(response.status_code)

        response.headers["X-Request-Id"] = getattr(g, "request_id", "")
        return response

    @app.errorhandler(SupportDeskError)
    def support_desk_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        app_logger.warning(f"404 Not Found: {request.path}")
        return jsonify({"error": "NotFound", "details": f"No route for {request.path}"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "MethodNotAllowed", "details": f"{request.method} not allowed on {request.path}"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app_logger.error("500 Internal Server Error", error=str(error))
        return jsonify({"error": "ServerError", "details": "Internal server error"}), 500

    # ============================================
    # ROUTES
    # ============================================

    @app.route("/health")
    def health_check():
        """Health check endpoint for Docker/monitoring"""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "version": "1.0.0",
        }, 200

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
