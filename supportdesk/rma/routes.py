"""RMA workflow API Routes (support agents only)"""

from flask import Blueprint, current_app, jsonify, request

from ..auth import agent_required, current_user
from ..db import get_connection
from ..errors import NotFoundError, RemoteError, SupportDeskError, ValidationError
from ..observability.metrics_collector import RMA_DELETIONS, RMA_STEP_UPDATES, metrics_collector
from ..observability.structured_logger import app_logger
from .manager import RMAManager

bp = Blueprint("rma", __name__, url_prefix="/rma")


def get_conn():
    """Get database connection."""
    return get_connection(current_app.config["DB_PATH"])


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no"):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError("'completed' must be a boolean")


# =============================
# Listing and reporting
# =============================

@bp.route("", methods=["GET"])
@agent_required
def list_rmas():
    """
    List RMAs with step progress.

    GET /rma?search=<text>  (matches RMA number or ticket title)
    """
    conn = get_conn()
    try:
        manager = RMAManager(conn)
        rmas = manager.list_rmas(search=request.args.get("search"))
        return jsonify({"success": True, "rmas": rmas, "summary": manager.summarize(rmas)}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        app_logger.error("Failed to list RMAs", exception=str(e))
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/stats", methods=["GET"])
@agent_required
def rma_stats():
    """Average days to reach each step and to close an RMA."""
    conn = get_conn()
    try:
        stats = RMAManager(conn).step_statistics()
        return jsonify({"success": True, "stats": stats}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        app_logger.error("Failed to compute RMA statistics", exception=str(e))
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/<rma_id>", methods=["GET"])
@agent_required
def get_rma(rma_id):
    conn = get_conn()
    try:
        data = RMAManager(conn).get_rma(rma_id)
        return jsonify({"success": True, **data}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


# =============================
# Step workflow
# =============================

@bp.route("/<rma_id>/steps/<step_id>", methods=["POST"])
@agent_required
def toggle_step(rma_id, step_id):
    """
    Check or uncheck a step.

    POST /rma/<rma_id>/steps/<step_id>
    Body: {
        "completed": true,
        "rma_number": "RMA-2024-001",      (step 1, when completing)
        "functionality_notes": "..."        (step 9, when unchecking)
    }
    """
    data = request.get_json(silent=True)
    if not data or "completed" not in data:
        return jsonify({"error": "BadRequest", "details": "Missing required field: completed"}), 400

    conn = get_conn()
    try:
        manager = RMAManager(conn)
        rma = manager.get_rma(rma_id)
        step = next((s for s in rma["steps"] if s["id"] == step_id), None)
        if step is None:
            raise NotFoundError(f"Step {step_id} does not belong to RMA {rma_id}")

        completed = _as_bool(data["completed"])
        result = manager.set_step_completion(
            step_id,
            completed,
            current_user().user_id,
            rma_number=data.get("rma_number"),
            functionality_notes=data.get("functionality_notes"),
        )

        RMA_STEP_UPDATES.labels(step_order=str(step["step_order"]), completed=str(completed).lower()).inc()
        metrics_collector.increment_counter("rma_step_updates_total")
        if result["rma"]["status"] == "completed" and rma["rma"]["status"] != "completed":
            metrics_collector.increment_counter("rma_completed_total")

        return jsonify({"success": True, **result}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        app_logger.error("Failed to update RMA step", rma_id=rma_id, step_id=step_id, exception=str(e))
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/<rma_id>/functionality-notes", methods=["POST"])
@agent_required
def save_functionality_notes(rma_id):
    """
    Save what is still not working while the final step stays open.

    POST /rma/<rma_id>/functionality-notes
    Body: {"notes": "Fan still noisy"}
    """
    data = request.get_json(silent=True) or {}
    conn = get_conn()
    try:
        result = RMAManager(conn).save_functionality_notes(rma_id, data.get("notes", ""))
        return jsonify({"success": True, **result}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


@bp.route("/<rma_id>", methods=["DELETE"])
@agent_required
def delete_rma(rma_id):
    conn = get_conn()
    try:
        RMAManager(conn).delete_rma(rma_id)
        RMA_DELETIONS.labels(outcome="success").inc()
        metrics_collector.increment_counter("rma_deleted_total")
        return jsonify({"success": True, "message": "RMA excluído com sucesso"}), 200
    except RemoteError as e:
        RMA_DELETIONS.labels(outcome="failed").inc()
        return jsonify(e.to_dict()), e.status_code
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()
