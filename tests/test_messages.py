import pytest

from supportdesk.auth import SessionContext
from supportdesk.db import new_id, to_iso
from supportdesk.errors import ValidationError
from supportdesk.tickets.messages import MessageService


def add_message(conn, ticket_id, content, created_at, is_internal=0, created_by=None, sender_type="agent"):
    conn.execute("""
        INSERT INTO ticket_messages (id, ticket_id, content, sender_type, is_internal, channel, created_by, created_at)
        VALUES (?, ?, ?, ?, ?, 'manual', ?, ?)
    """, (new_id(), ticket_id, content, sender_type, is_internal, created_by, to_iso(created_at)))
    conn.commit()


def message_count(conn, ticket_id):
    return conn.execute("SELECT COUNT(*) FROM ticket_messages WHERE ticket_id = ?", (ticket_id,)).fetchone()[0]


def test_internal_notes_hidden_from_requesters(conn, ticket_id, users, clock):
    add_message(conn, ticket_id, "Resposta pública", clock.advance(minutes=1))
    add_message(conn, ticket_id, "Nota interna", clock.advance(minutes=1), is_internal=1)
    service = MessageService(conn, clock=clock)

    requester_view = service.fetch_messages(ticket_id, users["requester"])
    agent_view = service.fetch_messages(ticket_id, users["agent"])

    assert [m["content"] for m in requester_view] == ["Resposta pública"]
    assert [m["content"] for m in agent_view] == ["Resposta pública", "Nota interna"]
    assert not any(m["is_internal"] for m in requester_view)


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_send_rejects_blank_text(conn, ticket_id, users, clock, text):
    with pytest.raises(ValidationError):
        MessageService(conn, clock=clock).send_message(ticket_id, text, users["agent"])

    assert message_count(conn, ticket_id) == 0


@pytest.mark.parametrize("text", [42, ["Olá"], {"text": "Olá"}])
def test_send_rejects_non_string_text(conn, ticket_id, users, clock, text):
    with pytest.raises(ValidationError, match="content"):
        MessageService(conn, clock=clock).send_message(ticket_id, text, users["agent"])

    assert message_count(conn, ticket_id) == 0


def test_send_without_user_is_a_no_op(conn, ticket_id, clock):
    assert MessageService(conn, clock=clock).send_message(ticket_id, "Olá", None) is None
    assert message_count(conn, ticket_id) == 0


def test_send_as_agent(conn, ticket_id, users, clock):
    clock.advance(minutes=10)
    feed = MessageService(conn, clock=clock).send_message(ticket_id, "  Vamos verificar  ", users["agent"])

    row = conn.execute("SELECT * FROM ticket_messages WHERE ticket_id = ?", (ticket_id,)).fetchone()
    assert row["content"] == "Vamos verificar"
    assert row["sender_type"] == "agent"
    assert row["sender_name"] == "Ana Agente"
    assert row["sender_email"] == "agente@example.com"
    assert row["is_internal"] == 0
    assert row["channel"] == "manual"
    assert row["created_by"] == users["agent"].user_id

    # Creation log line first, then the new message
    assert [e.type for e in feed] == ["log", "message"]


def test_send_as_requester_without_profile_name(conn, ticket_id, users, clock):
    anonymous = SessionContext(user_id=users["requester"].user_id, email="cliente@example.com", role="requester")

    MessageService(conn, clock=clock).send_message(ticket_id, "Alguma novidade?", anonymous)

    row = conn.execute("SELECT sender_type, sender_name FROM ticket_messages").fetchone()
    assert row["sender_type"] == "requester"
    assert row["sender_name"] == "Usuário"


def test_feed_alignment_depends_on_viewer(conn, ticket_id, users, clock):
    service = MessageService(conn, clock=clock)
    clock.advance(minutes=1)
    service.send_message(ticket_id, "Oi", users["requester"])
    clock.advance(minutes=1)
    service.send_message(ticket_id, "Olá", users["agent"])

    requester_feed = service.serialized_feed(ticket_id, users["requester"])
    agent_feed = service.serialized_feed(ticket_id, users["agent"])

    assert [e["alignment"] for e in requester_feed] == ["center", "right", "left"]
    assert [e["alignment"] for e in agent_feed] == ["center", "left", "right"]
    assert requester_feed[1]["is_own"] is True
