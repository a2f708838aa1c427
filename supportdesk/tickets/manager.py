"""
Ticket Manager

Creates tickets and applies the state changes agents make on the ticket
detail view. Every change writes the ticket row and appends one line to
its activity log in the same transaction.
"""

from __future__ import annotations
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..activity_log import append_ticket_log
from ..auth import SessionContext
from ..db import new_id, to_iso, utcnow
from ..errors import NotFoundError, PermissionDenied, RemoteError, ValidationError, text_field
from ..observability.structured_logger import app_logger

TICKET_STATUSES = ("open", "in_progress", "paused", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")

STATUS_LABELS = {
    "open": "Aberto",
    "in_progress": "Em Andamento",
    "paused": "Pausado",
    "closed": "Fechado",
}

EDITABLE_FIELDS = ("title", "description", "category", "priority", "serial_number", "equipment_model")

UNASSIGNED_LABEL = "Não atribuído"


class TicketManager:
    """Manages tickets and their activity log lines."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = utcnow):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.clock = clock

    # =============================
    # Creation
    # =============================

    def create_ticket(
        self,
        created_by: SessionContext,
        title: str,
        description: str,
        company_id: str,
        category: str,
        priority: str = "medium",
        contact_id: Optional[str] = None,
        equipment_model_id: Optional[str] = None,
        equipment_model: Optional[str] = None,
        serial_number: Optional[str] = None,
    ) -> str:
        """Create a ticket in status open; returns its id."""
        title = text_field(title, "title")
        description = text_field(description, "description")
        company_id = text_field(company_id, "company_id")
        category = text_field(category, "category")
        serial_number = text_field(serial_number, "serial_number", required=False)
        equipment_model = text_field(equipment_model, "equipment_model", required=False)
        contact_id = text_field(contact_id, "contact_id", required=False)
        equipment_model_id = text_field(equipment_model_id, "equipment_model_id", required=False)
        if priority not in TICKET_PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")

        company = self.conn.execute(
            "SELECT id FROM companies WHERE id = ? AND deleted_at IS NULL", (company_id,)
        ).fetchone()
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        if contact_id and not self.conn.execute(
            "SELECT id FROM contacts WHERE id = ? AND company_id = ? AND deleted_at IS NULL",
            (contact_id, company_id),
        ).fetchone():
            raise NotFoundError(f"Contact {contact_id} not found for company {company_id}")
        if equipment_model_id and not self.conn.execute(
            "SELECT id FROM equipment_models WHERE id = ? AND deleted_at IS NULL", (equipment_model_id,)
        ).fetchone():
            raise NotFoundError(f"Equipment model {equipment_model_id} not found")

        now = self.clock()
        stamp = to_iso(now)
        ticket_id = new_id()

        try:
            ticket_number = self.conn.execute(
                "SELECT COALESCE(MAX(ticket_number), 0) + 1 FROM tickets"
            ).fetchone()[0]

            self.conn.execute("""
                INSERT INTO tickets (
                    id, ticket_number, title, description, status, priority, category,
                    channel, responsibility, company_id, contact_id, equipment_model_id,
                    equipment_model, serial_number, created_by, ticket_log, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, 'open', ?, ?, 'manual', 'internal_support', ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """, (
                ticket_id, ticket_number, title, description, priority, category,
                company_id, contact_id, equipment_model_id, equipment_model, serial_number,
                created_by.user_id, stamp, stamp,
            ))

            append_ticket_log(
                self.conn, ticket_id, f"Ticket criado por {created_by.display_name}", now
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RemoteError(cause=e)

        app_logger.info("Ticket created", ticket_id=ticket_id, ticket_number=ticket_number)
        return ticket_id

    # =============================
    # Queries
    # =============================

    def get_ticket(self, ticket_id: str) -> Dict[str, Any]:
        """Ticket with company and assignee names. Soft-deleted tickets are not found."""
        row = self.conn.execute("""
            SELECT t.*,
                   c.name AS company_name,
                   p.full_name AS assigned_to_name
            FROM tickets t
            LEFT JOIN companies c ON c.id = t.company_id
            LEFT JOIN user_profiles p ON p.user_id = t.assigned_to
            WHERE t.id = ? AND t.deleted_at IS NULL
        """, (ticket_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return dict(row)

    def get_ticket_for(self, ticket_id: str, viewer: SessionContext) -> Dict[str, Any]:
        """Like get_ticket, but requesters may only see tickets they created."""
        ticket = self.get_ticket(ticket_id)
        if not viewer.is_agent and ticket["created_by"] != viewer.user_id:
            raise PermissionDenied("You do not have access to this ticket")
        return ticket

    def list_tickets(self, viewer: SessionContext, status: Optional[str] = None,
                     search: Optional[str] = None) -> List[Dict]:
        """Tickets the viewer may see, newest first; ``search`` matches title or company."""
        if status is not None and status not in TICKET_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = """
            SELECT t.id, t.ticket_number, t.title, t.status, t.priority, t.category,
                   t.assigned_to, t.created_by, t.created_at, t.updated_at,
                   c.name AS company_name
            FROM tickets t
            LEFT JOIN companies c ON c.id = t.company_id
            WHERE t.deleted_at IS NULL
        """
        params = []
        if not viewer.is_agent:
            query += " AND t.created_by = ?"
            params.append(viewer.user_id)
        if status:
            query += " AND t.status = ?"
            params.append(status)
        query += " ORDER BY t.created_at DESC"
        tickets = [dict(row) for row in self.conn.execute(query, params).fetchall()]

        if search:
            needle = search.lower()
            tickets = [
                ticket for ticket in tickets
                if needle in ticket["title"].lower()
                or (ticket["company_name"] and needle in ticket["company_name"].lower())
                or needle == str(ticket["ticket_number"])
            ]
        return tickets

    def status_counts(self, viewer: SessionContext) -> Dict[str, int]:
        """Number of visible tickets per status, every status present, plus ``total``."""
        query = "SELECT status, COUNT(*) AS n FROM tickets WHERE deleted_at IS NULL"
        params = []
        if not viewer.is_agent:
            query += " AND created_by = ?"
            params.append(viewer.user_id)
        query += " GROUP BY status"

        counts = {status: 0 for status in TICKET_STATUSES}
        for row in self.conn.execute(query, params).fetchall():
            counts[row["status"]] = row["n"]
        counts["total"] = sum(counts.values())
        return counts

    # =============================
    # State changes
    # =============================

    def update_status(self, ticket_id: str, new_status: str, actor: SessionContext) -> Dict[str, Any]:
        if new_status not in TICKET_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}")

        ticket = self.get_ticket(ticket_id)
        old_status = ticket["status"]
        if old_status == new_status:
            return ticket

        now = self.clock()
        resolved_at = to_iso(now) if new_status == "closed" else ticket["resolved_at"]
        self._write(
            ticket_id,
            {"status": new_status, "resolved_at": resolved_at},
            f"Status alterado de {STATUS_LABELS[old_status]} para {STATUS_LABELS[new_status]} "
            f"por {actor.display_name}",
            now,
        )
        app_logger.info("Ticket status changed", ticket_id=ticket_id, old=old_status, new=new_status)
        return self.get_ticket(ticket_id)

    def assign(self, ticket_id: str, assignee_id: Optional[str], actor: SessionContext) -> Dict[str, Any]:
        """Set or clear the responsible agent."""
        assignee_id = text_field(assignee_id, "assigned_to", required=False)
        ticket = self.get_ticket(ticket_id)
        if ticket["assigned_to"] == assignee_id:
            return ticket

        new_name = UNASSIGNED_LABEL
        if assignee_id:
            profile = self.conn.execute(
                "SELECT full_name, role FROM user_profiles WHERE user_id = ?", (assignee_id,)
            ).fetchone()
            if not profile:
                raise NotFoundError(f"User {assignee_id} not found")
            new_name = profile["full_name"] or assignee_id

        old_name = ticket["assigned_to_name"] or (ticket["assigned_to"] or UNASSIGNED_LABEL)
        now = self.clock()
        self._write(
            ticket_id,
            {"assigned_to": assignee_id},
            f"Responsável alterado de {old_name} para {new_name} por {actor.display_name}",
            now,
        )
        return self.get_ticket(ticket_id)

    def edit(self, ticket_id: str, fields: Dict[str, Any], actor: SessionContext) -> Dict[str, Any]:
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(unknown)}")
        fields = dict(fields)
        for name in ("title", "description", "category"):
            if name in fields:
                fields[name] = text_field(fields[name], name)
        for name in ("serial_number", "equipment_model"):
            if name in fields:
                fields[name] = text_field(fields[name], name, required=False)
        if "priority" in fields and fields["priority"] not in TICKET_PRIORITIES:
            raise ValidationError(f"Invalid priority: {fields['priority']}")

        ticket = self.get_ticket(ticket_id)
        changes = {name: value for name, value in fields.items() if ticket[name] != value}
        if not changes:
            return ticket

        # Keep the column order stable in the log sentence.
        changed_names = [name for name in EDITABLE_FIELDS if name in changes]
        self._write(
            ticket_id,
            changes,
            f"Ticket editado por {actor.display_name}: {', '.join(changed_names)}",
            self.clock(),
        )
        return self.get_ticket(ticket_id)

    # =============================
    # Helper Methods
    # =============================

    def _write(self, ticket_id: str, fields: Dict[str, Any], log_text: str, when: datetime):
        """Update the row and append the log line atomically."""
        fields = dict(fields, updated_at=to_iso(when))
        assignments = ", ".join(f"{column} = ?" for column in fields)
        try:
            self.conn.execute(
                f"UPDATE tickets SET {assignments} WHERE id = ?",
                (*fields.values(), ticket_id),
            )
            append_ticket_log(self.conn, ticket_id, log_text, when)
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            app_logger.error("Ticket update failed", ticket_id=ticket_id, exception=str(e))
            raise RemoteError(cause=e)
