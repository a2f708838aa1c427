"""
Ticket messages and the merged activity feed.

Messages are structured rows; the ticket log is a text blob. The feed shown
on the ticket detail view is both of them merged chronologically, re-read
from storage after every send.
"""

from __future__ import annotations
import sqlite3
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..activity_log import ActivityEntry, merge_activity, parse_ticket_log
from ..auth import SessionContext
from ..db import new_id, parse_timestamp, to_iso, utcnow
from ..errors import NotFoundError, RemoteError, ValidationError
from ..observability.structured_logger import app_logger


class MessageService:
    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = utcnow):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.clock = clock

    def fetch_messages(self, ticket_id: str, viewer: Optional[SessionContext]) -> List[Dict]:
        """Messages oldest first; internal notes only for agents."""
        query = "SELECT * FROM ticket_messages WHERE ticket_id = ?"
        if viewer is None or not viewer.is_agent:
            query += " AND is_internal = 0"
        query += " ORDER BY created_at ASC"
        return [dict(row) for row in self.conn.execute(query, (ticket_id,)).fetchall()]

    def activity_feed(self, ticket_id: str, viewer: Optional[SessionContext]) -> List[ActivityEntry]:
        ticket = self.conn.execute(
            "SELECT ticket_log, created_at FROM tickets WHERE id = ? AND deleted_at IS NULL",
            (ticket_id,),
        ).fetchone()
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        log_entries = parse_ticket_log(ticket["ticket_log"], parse_timestamp(ticket["created_at"]))
        return merge_activity(log_entries, self.fetch_messages(ticket_id, viewer))

    def serialized_feed(self, ticket_id: str, viewer: Optional[SessionContext]) -> List[Dict]:
        viewer_id = viewer.user_id if viewer else None
        return [entry.to_dict(viewer_id) for entry in self.activity_feed(ticket_id, viewer)]

    def send_message(self, ticket_id: str, text: str, viewer: Optional[SessionContext]) -> Optional[List[ActivityEntry]]:
        """
        Post a message as the signed-in user and return the re-fetched feed.

        Without a user this does nothing and returns None. Messages sent here
        are never internal notes.
        """
        if viewer is None:
            return None

        if text is not None and not isinstance(text, str):
            raise ValidationError("Field 'content' must be a string")
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text is required")

        ticket = self.conn.execute(
            "SELECT id FROM tickets WHERE id = ? AND deleted_at IS NULL", (ticket_id,)
        ).fetchone()
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        sender_type = "agent" if viewer.is_agent else "requester"
        try:
            self.conn.execute("""
                INSERT INTO ticket_messages (
                    id, ticket_id, content, sender_type, sender_name, sender_email,
                    is_internal, channel, created_by, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, 'manual', ?, ?)
            """, (
                new_id(), ticket_id, content, sender_type,
                viewer.full_name or "Usuário", viewer.email,
                viewer.user_id, to_iso(self.clock()),
            ))
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RemoteError(cause=e)

        app_logger.info("Message sent", ticket_id=ticket_id, sender_type=sender_type)
        return self.activity_feed(ticket_id, viewer)
