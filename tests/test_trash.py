import pytest

from supportdesk.errors import NotFoundError, ValidationError
from supportdesk.rma.manager import RMAManager
from supportdesk.tickets.manager import TicketManager
from supportdesk.tickets.messages import MessageService
from supportdesk.trash.manager import TrashManager


@pytest.fixture
def trash(conn, clock):
    return TrashManager(conn, retention_days=30, clock=clock)


def count(conn, table):
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_soft_delete_and_restore_ticket(trash, conn, ticket_id, clock):
    tickets = TicketManager(conn, clock=clock)

    trash.soft_delete("tickets", ticket_id)

    with pytest.raises(NotFoundError):
        tickets.get_ticket(ticket_id)
    deleted = trash.list_deleted("tickets")
    assert [item["id"] for item in deleted] == [ticket_id]
    assert deleted[0]["label"] == "Leitor não liga"

    trash.restore("tickets", ticket_id)

    assert tickets.get_ticket(ticket_id)["deleted_at"] is None
    assert trash.list_deleted("tickets") == []


def test_soft_delete_twice_or_restore_live_row(trash, ticket_id):
    with pytest.raises(NotFoundError):
        trash.restore("tickets", ticket_id)

    trash.soft_delete("tickets", ticket_id)
    with pytest.raises(NotFoundError):
        trash.soft_delete("tickets", ticket_id)


def test_unknown_entity(trash):
    with pytest.raises(ValidationError):
        trash.soft_delete("users", "x")
    with pytest.raises(ValidationError):
        trash.list_deleted("ticket_messages")
    with pytest.raises(ValidationError):
        trash.hard_delete_expired("nope")


def test_listing_only_covers_retention_window(trash, company_id, clock):
    trash.soft_delete("companies", company_id)
    assert len(trash.list_deleted("companies")) == 1

    clock.advance(days=31)
    assert trash.list_deleted("companies") == []


def test_hard_delete_expired_removes_ticket_and_dependents(trash, conn, ticket_id, users, clock):
    RMAManager(conn, clock=clock).request_rma(ticket_id, users["agent"].user_id)
    MessageService(conn, clock=clock).send_message(ticket_id, "Olá", users["agent"])
    trash.soft_delete("tickets", ticket_id)

    clock.advance(days=10)
    assert trash.hard_delete_expired()["tickets"] == 0
    assert count(conn, "tickets") == 1

    clock.advance(days=21)
    removed = trash.hard_delete_expired()

    assert removed["tickets"] == 1
    assert count(conn, "tickets") == 0
    assert count(conn, "ticket_messages") == 0
    assert count(conn, "rma_requests") == 0
    assert count(conn, "rma_steps") == 0


def test_hard_delete_expired_company_detaches_tickets(trash, conn, ticket_id, company_id, clock):
    trash.soft_delete("companies", company_id)
    clock.advance(days=31)

    removed = trash.hard_delete_expired("companies")

    assert removed == {"companies": 1}
    assert conn.execute("SELECT company_id FROM tickets WHERE id = ?", (ticket_id,)).fetchone()[0] is None
