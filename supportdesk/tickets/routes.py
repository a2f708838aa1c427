"""Ticket, message and activity feed API Routes"""

from flask import Blueprint, current_app, jsonify, request

from ..auth import agent_required, current_user, login_required
from ..db import get_connection
from ..errors import SupportDeskError
from ..observability.metrics_collector import MESSAGES_SENT, metrics_collector
from ..observability.structured_logger import app_logger
from ..rma.manager import RMAManager
from .manager import TicketManager
from .messages import MessageService

bp = Blueprint("tickets", __name__, url_prefix="/tickets")


def get_conn():
    """Get database connection."""
    return get_connection(current_app.config["DB_PATH"])


def _server_error(message, e, **context):
    app_logger.error(message, exception=str(e), exception_type=type(e).__name__, **context)
    return jsonify({"error": "ServerError", "details": str(e)}), 500


# =============================
# Tickets
# =============================

@bp.route("", methods=["GET"])
@login_required
def list_tickets():
    """GET /tickets?status=open&search=<title, company or number>"""
    conn = get_conn()
    try:
        tickets = TicketManager(conn).list_tickets(
            current_user(),
            status=request.args.get("status") or None,
            search=request.args.get("search"),
        )
        return jsonify({"success": True, "tickets": tickets}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to list tickets", e)
    finally:
        conn.close()


@bp.route("/summary", methods=["GET"])
@login_required
def ticket_summary():
    """Ticket counts per status for the dashboard cards."""
    conn = get_conn()
    try:
        counts = TicketManager(conn).status_counts(current_user())
        return jsonify({"success": True, "counts": counts}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to count tickets", e)
    finally:
        conn.close()


@bp.route("", methods=["POST"])
@login_required
def create_ticket():
    """
    Open a new ticket.

    POST /tickets
    Body: {
        "title": "Printer not starting",
        "description": "...",
        "company_id": "<uuid>",
        "category": "hardware",
        "priority": "medium",
        "contact_id": null,
        "equipment_model_id": null,
        "equipment_model": "X-200",
        "serial_number": "SN123"
    }
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "BadRequest", "details": "JSON body required"}), 400

    conn = get_conn()
    try:
        manager = TicketManager(conn)
        ticket_id = manager.create_ticket(
            current_user(),
            title=data.get("title"),
            description=data.get("description"),
            company_id=data.get("company_id"),
            category=data.get("category"),
            priority=data.get("priority", "medium"),
            contact_id=data.get("contact_id"),
            equipment_model_id=data.get("equipment_model_id"),
            equipment_model=data.get("equipment_model"),
            serial_number=data.get("serial_number"),
        )
        metrics_collector.increment_counter("tickets_created_total")
        return jsonify({"success": True, "ticket": manager.get_ticket(ticket_id)}), 201
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to create ticket", e)
    finally:
        conn.close()


@bp.route("/<ticket_id>", methods=["GET"])
@login_required
def get_ticket(ticket_id):
    conn = get_conn()
    try:
        ticket = TicketManager(conn).get_ticket_for(ticket_id, current_user())
        return jsonify({"success": True, "ticket": ticket}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to load ticket", e, ticket_id=ticket_id)
    finally:
        conn.close()


@bp.route("/<ticket_id>/status", methods=["POST"])
@agent_required
def update_status(ticket_id):
    """POST /tickets/<id>/status  Body: {"status": "in_progress"}"""
    data = request.get_json(silent=True) or {}
    if "status" not in data:
        return jsonify({"error": "BadRequest", "details": "Missing required field: status"}), 400

    conn = get_conn()
    try:
        manager = TicketManager(conn)
        before = manager.get_ticket(ticket_id)["status"]
        ticket = manager.update_status(ticket_id, data["status"], current_user())
        if ticket["status"] != before:
            metrics_collector.increment_counter("ticket_status_changes_total")
        return jsonify({"success": True, "ticket": ticket}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to update ticket status", e, ticket_id=ticket_id)
    finally:
        conn.close()


@bp.route("/<ticket_id>/assign", methods=["POST"])
@agent_required
def assign_ticket(ticket_id):
    """POST /tickets/<id>/assign  Body: {"assigned_to": "<user id>" | null}"""
    data = request.get_json(silent=True)
    if data is None or "assigned_to" not in data:
        return jsonify({"error": "BadRequest", "details": "Missing required field: assigned_to"}), 400

    conn = get_conn()
    try:
        ticket = TicketManager(conn).assign(ticket_id, data["assigned_to"] or None, current_user())
        return jsonify({"success": True, "ticket": ticket}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to assign ticket", e, ticket_id=ticket_id)
    finally:
        conn.close()


@bp.route("/<ticket_id>", methods=["PATCH"])
@agent_required
def edit_ticket(ticket_id):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "BadRequest", "details": "JSON body required"}), 400

    conn = get_conn()
    try:
        ticket = TicketManager(conn).edit(ticket_id, data, current_user())
        return jsonify({"success": True, "ticket": ticket}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to edit ticket", e, ticket_id=ticket_id)
    finally:
        conn.close()


# =============================
# Messages and activity
# =============================

@bp.route("/<ticket_id>/activity", methods=["GET"])
@login_required
def activity(ticket_id):
    """Messages and log lines merged oldest first."""
    user = current_user()
    conn = get_conn()
    try:
        TicketManager(conn).get_ticket_for(ticket_id, user)
        feed = MessageService(conn).serialized_feed(ticket_id, user)
        return jsonify({"success": True, "activity": feed}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to load activity", e, ticket_id=ticket_id)
    finally:
        conn.close()


@bp.route("/<ticket_id>/messages", methods=["GET"])
@login_required
def list_messages(ticket_id):
    user = current_user()
    conn = get_conn()
    try:
        TicketManager(conn).get_ticket_for(ticket_id, user)
        messages = MessageService(conn).fetch_messages(ticket_id, user)
        for message in messages:
            message["is_internal"] = bool(message["is_internal"])
        return jsonify({"success": True, "messages": messages}), 200
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to load messages", e, ticket_id=ticket_id)
    finally:
        conn.close()


@bp.route("/<ticket_id>/messages", methods=["POST"])
@login_required
def send_message(ticket_id):
    """
    POST /tickets/<id>/messages  Body: {"content": "text"}

    Returns the whole activity feed as stored after the insert.
    """
    data = request.get_json(silent=True) or {}
    user = current_user()
    conn = get_conn()
    try:
        TicketManager(conn).get_ticket_for(ticket_id, user)
        feed = MessageService(conn).send_message(ticket_id, data.get("content", ""), user)

        sender_type = "agent" if user.is_agent else "requester"
        MESSAGES_SENT.labels(sender_type=sender_type).inc()
        metrics_collector.increment_counter("messages_sent_total")
        metrics_collector.increment_counter("messages_sent_total", labels={"sender_type": sender_type})
        metrics_collector.record_event("messages_sent_total")

        activity = [entry.to_dict(user.user_id) for entry in feed]
        return jsonify({"success": True, "activity": activity}), 201
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to send message", e, ticket_id=ticket_id)
    finally:
        conn.close()


# =============================
# RMA request
# =============================

@bp.route("/<ticket_id>/rma", methods=["POST"])
@agent_required
def request_rma(ticket_id):
    """Open an RMA with its nine pending steps for this ticket."""
    conn = get_conn()
    try:
        manager = RMAManager(conn)
        rma_id = manager.request_rma(ticket_id, current_user().user_id)
        metrics_collector.increment_counter("rma_requested_total")
        return jsonify({"success": True, **manager.get_rma(rma_id)}), 201
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return _server_error("Failed to request RMA", e, ticket_id=ticket_id)
    finally:
        conn.close()
