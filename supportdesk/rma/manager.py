"""
RMA (Return Merchandise Authorization) Manager

Drives the fixed 9-step checklist attached to each RMA request:
1. RMA number assignment (the number is typed in when the step is checked)
2-8. Plain checkpoints (stamped with who/when on completion)
9. Functionality verification: completing it closes the RMA, leaving it
   open requires a description of what is still not working.

Every toggle writes the step row, the parent RMA row and the ticket log in a
single transaction and then re-reads the aggregate.
"""

from __future__ import annotations
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..activity_log import append_ticket_log, format_inline_timestamp
from ..db import new_id, parse_timestamp, to_iso, utcnow
from ..errors import NotFoundError, RemoteError, ValidationError
from ..observability.structured_logger import app_logger
from .steps import (
    CLOSING_STEP_ORDER,
    STEP_DEFINITIONS,
    StepChange,
    behaviour_for,
    kind_for_order,
)


class RMAManager:
    """Manages RMA requests and their steps."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = utcnow):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.clock = clock

    # =============================
    # Creation
    # =============================

    def request_rma(self, ticket_id: str, actor: Optional[str] = None) -> str:
        """Open an RMA for a ticket with all nine steps pending. Returns the RMA id."""
        ticket = self.conn.execute(
            "SELECT id FROM tickets WHERE id = ? AND deleted_at IS NULL", (ticket_id,)
        ).fetchone()
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        now = self.clock()
        stamp = to_iso(now)
        rma_id = new_id()

        try:
            self.conn.execute("""
                INSERT INTO rma_requests (id, ticket_id, rma_number, status, created_by, created_at, updated_at)
                VALUES (?, ?, NULL, 'in_progress', ?, ?, ?)
            """, (rma_id, ticket_id, actor, stamp, stamp))

            self.conn.executemany("""
                INSERT INTO rma_steps (id, rma_id, step_order, step_name, is_completed, created_at)
                VALUES (?, ?, ?, ?, 0, ?)
            """, [(new_id(), rma_id, d.order, d.name, stamp) for d in STEP_DEFINITIONS])

            append_ticket_log(
                self.conn, ticket_id,
                f"Solicitação de RMA aberta em {format_inline_timestamp(now)}", now,
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RemoteError(cause=e)

        app_logger.info("RMA requested", rma_id=rma_id, ticket_id=ticket_id, actor=actor)
        return rma_id

    # =============================
    # Step workflow
    # =============================

    def set_step_completion(
        self,
        step_id: str,
        completed: bool,
        actor: Optional[str],
        rma_number: Optional[str] = None,
        functionality_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Check or uncheck one step, applying the side effects of its kind.

        Validation happens before anything is written. Returns the re-fetched
        RMA aggregate.
        """
        step = self._get_step(step_id)
        rma = self._get_rma(step["rma_id"])

        behaviour = behaviour_for(kind_for_order(step["step_order"]))
        behaviour.validate(completed, rma_number, functionality_notes)

        now = self.clock()
        change = StepChange(step_fields={
            "is_completed": 1 if completed else 0,
            "completed_at": to_iso(now) if completed else None,
            "completed_by": actor if completed else None,
        })
        behaviour.apply(
            change, completed, now,
            rma_number=rma_number,
            functionality_notes=functionality_notes,
        )

        try:
            self._update("rma_steps", step_id, change.step_fields)
            if change.rma_fields:
                self._update("rma_requests", rma["id"], dict(change.rma_fields, updated_at=to_iso(now)))
            for line in change.log_lines:
                append_ticket_log(self.conn, rma["ticket_id"], line, now)
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            app_logger.error("RMA step update failed", step_id=step_id, exception=str(e))
            raise RemoteError(cause=e)

        app_logger.info(
            "RMA step updated",
            rma_id=rma["id"],
            step_order=step["step_order"],
            completed=completed,
            actor=actor,
        )

        result = self.get_rma(rma["id"])
        result["needs_functionality_notes"] = (
            change.needs_functionality_notes or result["needs_functionality_notes"]
        )
        return result

    def save_functionality_notes(self, rma_id: str, text: str) -> Dict[str, Any]:
        """Persist the closing step's notes without touching its completion."""
        if text is not None and not isinstance(text, str):
            raise ValidationError("Field 'notes' must be a string")
        if not (text or "").strip():
            raise ValidationError("Functionality notes are required")

        self._get_rma(rma_id)
        step = self.conn.execute("""
            SELECT id, is_completed FROM rma_steps
            WHERE rma_id = ? AND step_order = ? AND deleted_at IS NULL
        """, (rma_id, CLOSING_STEP_ORDER)).fetchone()
        if not step:
            raise NotFoundError(f"RMA {rma_id} has no step {CLOSING_STEP_ORDER}")
        # Completing the closing step clears its notes; keep them cleared.
        if step["is_completed"]:
            raise ValidationError("Closing step is already completed")

        try:
            self.conn.execute(
                "UPDATE rma_steps SET functionality_notes = ? WHERE id = ?",
                (text, step["id"]),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RemoteError(cause=e)

        return self.get_rma(rma_id)

    def delete_rma(self, rma_id: str):
        """
        Remove an RMA and its steps, then note the removal on the ticket.

        Steps go first (they reference the RMA). Each write is committed on
        its own, so a failure after the first one leaves the RMA without
        steps; the error is surfaced as RemoteError and nothing is undone.
        """
        rma = self._get_rma(rma_id)
        label = rma["rma_number"] or "sem número"

        try:
            self.conn.execute("DELETE FROM rma_steps WHERE rma_id = ?", (rma_id,))
            self.conn.commit()

            self.conn.execute("DELETE FROM rma_requests WHERE id = ?", (rma_id,))
            self.conn.commit()

            now = self.clock()
            append_ticket_log(
                self.conn, rma["ticket_id"],
                f"RMA {label} excluído em {format_inline_timestamp(now)}", now,
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            app_logger.error("RMA deletion failed", rma_id=rma_id, exception=str(e))
            raise RemoteError(cause=e)

        app_logger.info("RMA deleted", rma_id=rma_id, rma_number=rma["rma_number"])

    # =============================
    # Query / Reporting Methods
    # =============================

    def get_rma(self, rma_id: str) -> Dict[str, Any]:
        """RMA with its ticket summary and ordered steps."""
        rma = self._get_rma(rma_id)

        ticket = self.conn.execute(
            "SELECT id, title, ticket_number FROM tickets WHERE id = ?", (rma["ticket_id"],)
        ).fetchone()

        steps = self.conn.execute("""
            SELECT * FROM rma_steps
            WHERE rma_id = ? AND deleted_at IS NULL
            ORDER BY step_order
        """, (rma_id,)).fetchall()

        steps_list = []
        for row in steps:
            step = dict(row)
            step["is_completed"] = bool(step["is_completed"])
            step["kind"] = kind_for_order(step["step_order"]).value
            steps_list.append(step)

        closing = next((s for s in steps_list if s["step_order"] == CLOSING_STEP_ORDER), None)

        return {
            "rma": dict(rma),
            "ticket": dict(ticket) if ticket else None,
            "steps": steps_list,
            "needs_functionality_notes": bool(closing and not closing["is_completed"]),
        }

    def list_rmas(self, search: Optional[str] = None) -> List[Dict]:
        """All live RMAs, newest first, with step progress."""
        rows = self.conn.execute("""
            SELECT r.*,
                   t.title AS ticket_title,
                   t.ticket_number AS ticket_number,
                   COUNT(s.id) AS total_steps,
                   COALESCE(SUM(s.is_completed), 0) AS completed_steps
            FROM rma_requests r
            JOIN tickets t ON t.id = r.ticket_id AND t.deleted_at IS NULL
            LEFT JOIN rma_steps s ON s.rma_id = r.id AND s.deleted_at IS NULL
            WHERE r.deleted_at IS NULL
            GROUP BY r.id
            ORDER BY r.created_at DESC
        """).fetchall()

        rmas = [dict(row) for row in rows]
        if search:
            needle = search.lower()
            rmas = [
                rma for rma in rmas
                if (rma["rma_number"] and needle in rma["rma_number"].lower())
                or (rma["ticket_title"] and needle in rma["ticket_title"].lower())
            ]
        return rmas

    @staticmethod
    def summarize(rmas: List[Dict]) -> Dict[str, int]:
        return {
            "total": len(rmas),
            "pending": sum(1 for r in rmas if r["completed_steps"] == 0),
            "in_progress": sum(
                1 for r in rmas if r["completed_steps"] > 0 and r["status"] != "completed"
            ),
            "completed": sum(1 for r in rmas if r["status"] == "completed"),
        }

    def step_statistics(self) -> Dict[str, Any]:
        """Average days from RMA creation to each step's completion."""
        rows = self.conn.execute("""
            SELECT s.step_name, s.step_order, s.completed_at, r.created_at AS rma_created_at
            FROM rma_steps s
            JOIN rma_requests r ON r.id = s.rma_id
            JOIN tickets t ON t.id = r.ticket_id AND t.deleted_at IS NULL
            WHERE s.is_completed = 1
              AND s.completed_at IS NOT NULL
              AND s.deleted_at IS NULL
              AND r.deleted_at IS NULL
        """).fetchall()

        per_step: Dict[str, Dict] = {}
        closing_times = []
        for row in rows:
            days = _days_between(row["rma_created_at"], row["completed_at"])
            bucket = per_step.setdefault(row["step_name"], {"order": row["step_order"], "times": []})
            bucket["times"].append(days)
            if row["step_order"] == CLOSING_STEP_ORDER:
                closing_times.append(days)

        steps = sorted(
            (
                {
                    "step_name": name,
                    "step_order": data["order"],
                    "avg_days": round(sum(data["times"]) / len(data["times"]), 1),
                }
                for name, data in per_step.items()
            ),
            key=lambda item: item["step_order"],
        )

        avg_total = sum(closing_times) / len(closing_times) if closing_times else 0
        return {
            "steps": steps,
            "avg_total_days": round(avg_total, 1),
            "completed_rmas": len(closing_times),
        }

    # =============================
    # Helper Methods
    # =============================

    def _get_rma(self, rma_id: str) -> sqlite3.Row:
        """Get RMA or raise error."""
        rma = self.conn.execute(
            "SELECT * FROM rma_requests WHERE id = ? AND deleted_at IS NULL", (rma_id,)
        ).fetchone()
        if not rma:
            raise NotFoundError(f"RMA {rma_id} not found")
        return rma

    def _get_step(self, step_id: str) -> sqlite3.Row:
        step = self.conn.execute(
            "SELECT * FROM rma_steps WHERE id = ? AND deleted_at IS NULL", (step_id,)
        ).fetchone()
        if not step:
            raise NotFoundError(f"RMA step {step_id} not found")
        return step

    def _update(self, table: str, row_id: str, fields: Dict[str, Any]):
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self.conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*fields.values(), row_id),
        )


def _days_between(start: str, end: str) -> float:
    delta = parse_timestamp(end) - parse_timestamp(start)
    return delta.total_seconds() / 86400
