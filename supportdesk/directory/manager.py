"""
Directory Manager

Companies, their contacts and the equipment model catalogue. Tickets point
at these rows, so they are only ever soft deleted (through the trash) and
listings hide trashed rows.
"""

from __future__ import annotations
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..db import new_id, to_iso, utcnow
from ..errors import NotFoundError, RemoteError, ValidationError, text_field
from ..observability.structured_logger import app_logger
from ..trash.manager import TrashManager


class DirectoryManager:
    """
    Create/list/update/trash for one directory table.

    Subclasses name the table and its optional text columns; ``name`` is
    always required.
    """

    table = ""
    label = ""
    optional_fields: tuple = ()

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = utcnow):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.clock = clock

    # =============================
    # Writes
    # =============================

    def create(self, name: str, **fields) -> Dict[str, Any]:
        values = self._clean(dict(fields, name=name), creating=True)
        values.update(self._parent_fields(fields))

        row_id = new_id()
        stamp = to_iso(self.clock())
        values.update(id=row_id, created_at=stamp, updated_at=stamp)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            self.conn.execute(
                f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            app_logger.error(f"Creating {self.label} failed", exception=str(e))
            raise RemoteError(cause=e)

        app_logger.info(f"{self.label.capitalize()} created", id=row_id, name=values["name"])
        return self.get(row_id)

    def update(self, row_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Change the given columns; blank optional values are stored as NULL."""
        if not fields:
            raise ValidationError("No fields to update")
        changes = self._clean(fields, creating=False)
        self.get(row_id)

        changes["updated_at"] = to_iso(self.clock())
        assignments = ", ".join(f"{column} = ?" for column in changes)
        try:
            self.conn.execute(
                f"UPDATE {self.table} SET {assignments} WHERE id = ?",
                (*changes.values(), row_id),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            app_logger.error(f"Updating {self.label} failed", id=row_id, exception=str(e))
            raise RemoteError(cause=e)
        return self.get(row_id)

    def delete(self, row_id: str):
        """Move the row to the trash; it stays restorable for the retention window."""
        self.get(row_id)
        TrashManager(self.conn, clock=self.clock).soft_delete(self.table, row_id)

    # =============================
    # Queries
    # =============================

    def get(self, row_id: str) -> Dict[str, Any]:
        row = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE id = ? AND deleted_at IS NULL", (row_id,)
        ).fetchone()
        if not row:
            raise NotFoundError(f"{self.label.capitalize()} {row_id} not found")
        return dict(row)

    def list_all(self, search: Optional[str] = None) -> List[Dict]:
        """Live rows ordered by name, optionally filtered by a name substring."""
        rows = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE deleted_at IS NULL ORDER BY name COLLATE NOCASE"
        ).fetchall()
        return _filter_by_name([dict(row) for row in rows], search)

    # =============================
    # Helper Methods
    # =============================

    def _clean(self, fields: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        allowed = ("name",) + self.optional_fields
        unknown = sorted(set(fields) - set(allowed) - set(self._parent_columns()))
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

        values = {}
        if creating or "name" in fields:
            values["name"] = text_field(fields.get("name"), "name")
        for column in self.optional_fields:
            if column in fields:
                values[column] = text_field(fields[column], column, required=False)
        return values

    def _parent_columns(self) -> tuple:
        return ()

    def _parent_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return {}


class CompanyManager(DirectoryManager):
    table = "companies"
    label = "company"
    optional_fields = ("primary_email", "whatsapp_phone", "notes")

    def list_all(self, search: Optional[str] = None) -> List[Dict]:
        """Companies with the number of live contacts and open tickets."""
        rows = self.conn.execute("""
            SELECT c.*,
                   (SELECT COUNT(*) FROM contacts k
                     WHERE k.company_id = c.id AND k.deleted_at IS NULL) AS contact_count,
                   (SELECT COUNT(*) FROM tickets t
                     WHERE t.company_id = c.id AND t.deleted_at IS NULL
                       AND t.status != 'closed') AS open_tickets
            FROM companies c
            WHERE c.deleted_at IS NULL
            ORDER BY c.name COLLATE NOCASE
        """).fetchall()
        return _filter_by_name([dict(row) for row in rows], search)


class ContactManager(DirectoryManager):
    table = "contacts"
    label = "contact"
    optional_fields = ("email", "phone", "position")

    def list_for_company(self, company_id: str, search: Optional[str] = None) -> List[Dict]:
        CompanyManager(self.conn, clock=self.clock).get(company_id)
        rows = self.conn.execute("""
            SELECT * FROM contacts
            WHERE company_id = ? AND deleted_at IS NULL
            ORDER BY name COLLATE NOCASE
        """, (company_id,)).fetchall()
        return _filter_by_name([dict(row) for row in rows], search)

    def _parent_columns(self) -> tuple:
        return ("company_id",)

    def _parent_fields(self, fields):
        company_id = text_field(fields.get("company_id"), "company_id")
        CompanyManager(self.conn, clock=self.clock).get(company_id)
        return {"company_id": company_id}

    def _clean(self, fields, creating):
        # A contact stays with the company it was created for.
        if not creating and "company_id" in fields:
            raise ValidationError("Contacts cannot be moved to another company")
        return super()._clean(fields, creating)


class EquipmentModelManager(DirectoryManager):
    table = "equipment_models"
    label = "equipment model"
    optional_fields = ("manufacturer", "category", "description")


def _filter_by_name(rows: List[Dict], search: Optional[str]) -> List[Dict]:
    if not search:
        return rows
    needle = search.lower()
    return [row for row in rows if needle in (row["name"] or "").lower()]
