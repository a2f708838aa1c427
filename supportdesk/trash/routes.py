"""Trash API Routes (admins only)"""

from flask import Blueprint, current_app, jsonify, request

from ..auth import admin_required
from ..db import get_connection
from ..errors import SupportDeskError
from ..observability.metrics_collector import metrics_collector
from ..observability.structured_logger import app_logger
from .manager import TrashManager

bp = Blueprint("trash", __name__, url_prefix="/trash")


def get_manager(conn) -> TrashManager:
    return TrashManager(conn, retention_days=current_app.config["TRASH_RETENTION_DAYS"])


@bp.route("/<entity>", methods=["GET"])
@admin_required
def list_deleted(entity):
    conn = get_connection(current_app.config["DB_PATH"])
    try:
        items = get_manager(conn).list_deleted(entity)
        return jsonify({"success": True, "entity": entity, "items": items}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/<entity>/<row_id>/delete", methods=["POST"])
@admin_required
def soft_delete(entity, row_id):
    conn = get_connection(current_app.config["DB_PATH"])
    try:
        get_manager(conn).soft_delete(entity, row_id)
        return jsonify({"success": True}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/<entity>/<row_id>/restore", methods=["POST"])
@admin_required
def restore(entity, row_id):
    conn = get_connection(current_app.config["DB_PATH"])
    try:
        get_manager(conn).restore(entity, row_id)
        return jsonify({"success": True}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/empty", methods=["POST"])
@admin_required
def empty_trash():
    """
    POST /trash/empty  Body (optional): {"entity": "tickets"}

    Removes everything past the retention window.
    """
    data = request.get_json(silent=True) or {}
    conn = get_connection(current_app.config["DB_PATH"])
    try:
        removed = get_manager(conn).hard_delete_expired(data.get("entity"))
        metrics_collector.increment_counter("trash_rows_removed_total", sum(removed.values()))
        return jsonify({"success": True, "removed": removed}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        app_logger.error("Failed to empty trash", exception=str(e))
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()
