from datetime import datetime, timedelta, timezone

import pytest

from supportdesk.auth import SessionContext, create_user
from supportdesk.db import get_connection, init_db, new_id, to_iso
from supportdesk.tickets.manager import TicketManager


class FakeClock:
    """Callable clock the managers accept; tests move it forward by hand."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def local_timezone(monkeypatch):
    monkeypatch.setenv("LOG_TIMEZONE", "America/Sao_Paulo")


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "app.sqlite")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def clock():
    # 10:30 in São Paulo
    return FakeClock(datetime(2024, 12, 25, 13, 30, 0, tzinfo=timezone.utc))


def add_user(conn, email, full_name, role):
    user_id = create_user(conn, email, "secret", full_name=full_name, role=role)
    conn.commit()
    return SessionContext(user_id=user_id, email=email, full_name=full_name, role=role)


def add_company(conn, name="Acme Ltda"):
    company_id = new_id()
    now = to_iso(datetime.now(timezone.utc))
    conn.execute(
        "INSERT INTO companies (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (company_id, name, now, now),
    )
    conn.commit()
    return company_id


@pytest.fixture
def users(conn):
    return {
        "admin": add_user(conn, "admin@example.com", "Alice Admin", "admin"),
        "agent": add_user(conn, "agente@example.com", "Ana Agente", "support_agent"),
        "requester": add_user(conn, "cliente@example.com", "Carlos Cliente", "requester"),
        "other": add_user(conn, "outro@example.com", "Olga Outra", "requester"),
    }


@pytest.fixture
def company_id(conn):
    return add_company(conn)


@pytest.fixture
def ticket_id(conn, users, company_id, clock):
    return TicketManager(conn, clock=clock).create_ticket(
        users["requester"],
        title="Leitor não liga",
        description="O equipamento não liga",
        company_id=company_id,
        category="hardware",
    )


def ticket_log_lines(conn, ticket_id):
    row = conn.execute("SELECT ticket_log FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
    return (row["ticket_log"] or "").split("\n")
