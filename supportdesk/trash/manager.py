"""
Trash (soft delete) Manager

Rows are never removed straight away: deleting sets ``deleted_at`` and the
row stays restorable for ``retention_days``. Emptying the trash removes rows
whose grace window has passed, together with the rows that depend on them.
"""

from __future__ import annotations
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..db import to_iso, utcnow
from ..errors import NotFoundError, RemoteError, ValidationError
from ..observability.structured_logger import app_logger

DEFAULT_RETENTION_DAYS = 30

# Children before parents.
TRASH_ENTITIES = ("rma_steps", "rma_requests", "tickets", "contacts", "companies", "equipment_models")

# Statements run before an expired batch is removed, so foreign keys hold.
# "{ids}" expands to the placeholders of the batch being removed.
_DEPENDENTS = {
    "rma_steps": (),
    "rma_requests": (
        "DELETE FROM rma_steps WHERE rma_id IN ({ids})",
    ),
    "tickets": (
        "DELETE FROM ticket_messages WHERE ticket_id IN ({ids})",
        "DELETE FROM rma_steps WHERE rma_id IN (SELECT id FROM rma_requests WHERE ticket_id IN ({ids}))",
        "DELETE FROM rma_requests WHERE ticket_id IN ({ids})",
    ),
    "contacts": (
        "UPDATE tickets SET contact_id = NULL WHERE contact_id IN ({ids})",
    ),
    "companies": (
        "UPDATE tickets SET contact_id = NULL WHERE contact_id IN (SELECT id FROM contacts WHERE company_id IN ({ids}))",
        "DELETE FROM contacts WHERE company_id IN ({ids})",
        "UPDATE tickets SET company_id = NULL WHERE company_id IN ({ids})",
    ),
    "equipment_models": (
        "UPDATE tickets SET equipment_model_id = NULL WHERE equipment_model_id IN ({ids})",
    ),
}

# Column shown as the item's label in the trash listing.
_LABEL_COLUMN = {
    "rma_steps": "step_name",
    "rma_requests": "rma_number",
    "tickets": "title",
    "contacts": "name",
    "companies": "name",
    "equipment_models": "name",
}


class TrashManager:
    """Soft delete, restore and expiry for the trash-aware tables."""

    def __init__(self, conn: sqlite3.Connection, retention_days: int = DEFAULT_RETENTION_DAYS,
                 clock: Callable[[], datetime] = utcnow):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.retention_days = retention_days
        self.clock = clock

    def soft_delete(self, entity: str, row_id: str):
        self._check_entity(entity)
        self._run(
            f"UPDATE {entity} SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
            (to_iso(self.clock()), row_id),
            entity, row_id, "live",
        )
        app_logger.info("Moved to trash", entity=entity, id=row_id)

    def restore(self, entity: str, row_id: str):
        self._check_entity(entity)
        self._run(
            f"UPDATE {entity} SET deleted_at = NULL WHERE id = ? AND deleted_at IS NOT NULL",
            (row_id,),
            entity, row_id, "deleted",
        )
        app_logger.info("Restored from trash", entity=entity, id=row_id)

    def list_deleted(self, entity: str) -> List[Dict]:
        """Items deleted within the retention window, most recent first."""
        self._check_entity(entity)
        rows = self.conn.execute(f"""
            SELECT id, {_LABEL_COLUMN[entity]} AS label, deleted_at
            FROM {entity}
            WHERE deleted_at IS NOT NULL AND deleted_at >= ?
            ORDER BY deleted_at DESC
        """, (self._cutoff(),)).fetchall()
        return [dict(row) for row in rows]

    def hard_delete_expired(self, entity: Optional[str] = None) -> Dict[str, int]:
        """
        Permanently remove rows deleted before the retention cutoff.

        With no entity every table is emptied, children first. Returns the
        number of rows removed per entity. Each entity is its own transaction.
        """
        if entity is not None:
            self._check_entity(entity)
        entities = [entity] if entity else list(TRASH_ENTITIES)

        cutoff = self._cutoff()
        removed = {}
        for name in entities:
            ids = [row["id"] for row in self.conn.execute(
                f"SELECT id FROM {name} WHERE deleted_at IS NOT NULL AND deleted_at < ?", (cutoff,)
            ).fetchall()]
            if not ids:
                removed[name] = 0
                continue

            placeholders = ", ".join("?" for _ in ids)
            try:
                for statement in _DEPENDENTS[name]:
                    self.conn.execute(statement.format(ids=placeholders), ids)
                self.conn.execute(f"DELETE FROM {name} WHERE id IN ({placeholders})", ids)
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                app_logger.error("Emptying trash failed", entity=name, exception=str(e))
                raise RemoteError(cause=e)
            removed[name] = len(ids)

        app_logger.info("Trash emptied", removed=removed)
        return removed

    # =============================
    # Helper Methods
    # =============================

    def _cutoff(self) -> str:
        return to_iso(self.clock() - timedelta(days=self.retention_days))

    def _check_entity(self, entity: str):
        if entity not in TRASH_ENTITIES:
            raise ValidationError(f"Unknown entity: {entity}")

    def _run(self, sql: str, params: tuple, entity: str, row_id: str, expected: str):
        try:
            cursor = self.conn.execute(sql, params)
            if cursor.rowcount == 0:
                self.conn.rollback()
                raise NotFoundError(f"No {expected} row {row_id} in {entity}")
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RemoteError(cause=e)
