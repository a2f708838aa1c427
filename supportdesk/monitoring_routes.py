"""
Monitoring and metrics API endpoints.
Provides real-time visibility into system health and performance.
"""

import json
import time

from flask import Blueprint, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .observability.metrics_collector import metrics_collector
from .observability.structured_logger import app_logger

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/monitoring")

RECENT_LOG_LINES = 100


@monitoring_bp.route("/api/metrics")
def get_metrics():
    """Business and HTTP metrics as JSON."""
    try:
        metrics = metrics_collector.get_business_metrics()
        return jsonify({
            "status": "success",
            "data": metrics,
            "timestamp": time.time(),
        })
    except Exception as e:
        app_logger.error(f"Error fetching metrics: {str(e)}")
        return jsonify({"status": "error", "message": str(e)}), 500


@monitoring_bp.route("/api/metrics/all")
def get_all_metrics():
    return jsonify({"status": "success", "data": metrics_collector.get_all_metrics()})


@monitoring_bp.route("/metrics")
def prometheus_metrics():
    """Prometheus scrape endpoint."""
    return Response(generate_latest(REGISTRY), mimetype=CONTENT_TYPE_LATEST)


@monitoring_bp.route("/api/health")
def health_check():
    """
    Health check endpoint for container orchestration.
    Degraded when more than one error per second over the last minute.
    """
    uptime = time.time() - metrics_collector.start_time
    error_rate = metrics_collector.get_rate("errors_total", window_seconds=60)
    is_healthy = error_rate < 1.0

    return jsonify({
        "status": "healthy" if is_healthy else "degraded",
        "uptime_seconds": uptime,
        "error_rate_per_second": error_rate,
        "timestamp": time.time(),
    }), 200 if is_healthy else 503


@monitoring_bp.route("/api/logs/recent")
def get_recent_logs():
    """Last log entries from LOG_FILE, when file logging is enabled."""
    log_file = app_logger.log_file
    if not log_file:
        return jsonify({"status": "success", "logs": [], "count": 0, "message": "File logging is disabled"})

    try:
        with open(log_file, "r", encoding="utf-8") as f:
            recent_lines = f.readlines()[-RECENT_LOG_LINES:]
    except FileNotFoundError:
        return jsonify({"status": "success", "logs": [], "count": 0, "message": "No logs available yet"})
    except OSError as e:
        app_logger.error(f"Error reading logs: {str(e)}")
        return jsonify({"status": "error", "message": str(e)}), 500

    logs = []
    for line in recent_lines:
        try:
            logs.append(json.loads(line.strip()))
        except json.JSONDecodeError:
            # Skip malformed lines
            continue

    return jsonify({"status": "success", "logs": logs, "count": len(logs)})
