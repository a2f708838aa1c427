"""
Ticket activity log.

``tickets.ticket_log`` is a newline separated text blob where every line has
the form ``[DD/MM/YYYY HH:MM:SS] free text``. Every state-changing write on a
ticket appends one line; the ticket detail view parses the blob back into
entries and merges them with the structured message rows into a single
chronological feed.
"""

from __future__ import annotations
import os
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

from .db import parse_timestamp, to_iso, utcnow
from .errors import NotFoundError

DEFAULT_TIMEZONE = "America/Sao_Paulo"

BRACKET_FORMAT = "%d/%m/%Y %H:%M:%S"
INLINE_FORMAT = "%d/%m/%Y %H:%M"

_LEADING_BRACKET = re.compile(r"^\s*\[([^\]]*)\]\s*(.*)$")


class ActionType(str, Enum):
    STATUS_CHANGE = "status_change"
    ASSIGNMENT_CHANGE = "assignment_change"
    RMA_CREATION = "rma_creation"
    TICKET_EDIT = "ticket_edit"
    GENERAL = "general"


# Checked in order; the first keyword found wins.
_CLASSIFIERS = (
    (("status",), ActionType.STATUS_CHANGE),
    (("responsável", "atribuído"), ActionType.ASSIGNMENT_CHANGE),
    (("rma",), ActionType.RMA_CREATION),
    (("editado", "atualizado"), ActionType.TICKET_EDIT),
)


@dataclass
class ActivityEntry:
    type: str
    id: str
    timestamp: datetime
    content: str
    action_type: Optional[ActionType] = None
    message: Dict = field(default_factory=dict)

    @property
    def created_by(self) -> Optional[str]:
        return self.message.get("created_by")

    def to_dict(self, viewer_id: Optional[str] = None) -> Dict:
        alignment = alignment_for(self, viewer_id)
        data = {
            "type": self.type,
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "content": self.content,
            "alignment": alignment,
            "is_own": alignment == "right",
        }
        if self.type == "log":
            data["action_type"] = self.action_type.value
        else:
            data.update({
                "sender_type": self.message.get("sender_type"),
                "sender_name": self.message.get("sender_name"),
                "sender_email": self.message.get("sender_email"),
                "is_internal": bool(self.message.get("is_internal")),
                "created_by": self.message.get("created_by"),
            })
        return data


def local_zone() -> ZoneInfo:
    if has_app_context():
        name = current_app.config.get("LOG_TIMEZONE", DEFAULT_TIMEZONE)
    else:
        name = os.environ.get("LOG_TIMEZONE", DEFAULT_TIMEZONE)
    return ZoneInfo(name)


def format_inline_timestamp(when: datetime) -> str:
    """Short ``dd/mm/yyyy HH:MM`` form used inside log sentences."""
    return _localize(when).strftime(INLINE_FORMAT)


def format_log_line(text: str, when: datetime) -> str:
    return f"[{_localize(when).strftime(BRACKET_FORMAT)}] {text.strip()}"


def append_ticket_log(conn: sqlite3.Connection, ticket_id: str, text: str, when: datetime) -> str:
    """
    Append one line to the ticket's log and write the row back.

    Does not commit; callers decide whether the append shares a transaction
    with other writes. Returns the appended line.
    """
    ticket = conn.execute(
        "SELECT ticket_log FROM tickets WHERE id = ?", (ticket_id,)
    ).fetchone()
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")

    line = format_log_line(text, when)
    current = ticket["ticket_log"] or ""
    updated = f"{current}\n{line}" if current else line

    conn.execute(
        "UPDATE tickets SET ticket_log = ?, updated_at = ? WHERE id = ?",
        (updated, to_iso(when), ticket_id),
    )
    return line


def classify_action(content: str) -> ActionType:
    lowered = content.lower()
    for keywords, action in _CLASSIFIERS:
        if any(keyword in lowered for keyword in keywords):
            return action
    return ActionType.GENERAL


def parse_log_line(line: str, fallback: datetime) -> tuple:
    """Return ``(timestamp, content)`` for a single raw line."""
    match = _LEADING_BRACKET.match(line)
    if match:
        try:
            stamp = datetime.strptime(match.group(1).strip(), BRACKET_FORMAT)
        except ValueError:
            return fallback, line
        return stamp.replace(tzinfo=local_zone()), match.group(2).strip()
    return fallback, line


def parse_ticket_log(log_text: Optional[str], fallback: datetime) -> List[ActivityEntry]:
    entries = []
    if not log_text:
        return entries

    lines = [line for line in log_text.split("\n") if line.strip()]
    for index, line in enumerate(lines):
        timestamp, content = parse_log_line(line, fallback)
        entries.append(ActivityEntry(
            type="log",
            id=f"log-{index}",
            timestamp=timestamp,
            content=content,
            action_type=classify_action(content),
        ))
    return entries


def message_entries(messages: Iterable[Dict]) -> List[ActivityEntry]:
    return [
        ActivityEntry(
            type="message",
            id=message["id"],
            timestamp=parse_timestamp(message["created_at"]),
            content=message["content"],
            message=dict(message),
        )
        for message in messages
    ]


def merge_activity(log_entries: List[ActivityEntry], messages: Iterable[Dict]) -> List[ActivityEntry]:
    """Log entries then messages, stable-sorted oldest first."""
    combined = list(log_entries) + message_entries(messages)
    return sorted(combined, key=lambda entry: entry.timestamp)


def alignment_for(entry: ActivityEntry, viewer_id: Optional[str]) -> str:
    if entry.type == "log":
        return "center"
    if viewer_id is not None and entry.created_by == viewer_id:
        return "right"
    return "left"


def _localize(when: Optional[datetime]) -> datetime:
    when = when or utcnow()
    if when.tzinfo is None:
        return when.replace(tzinfo=local_zone())
    return when.astimezone(local_zone())
