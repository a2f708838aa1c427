import pytest

from supportdesk.app import create_app
from supportdesk.db import get_connection

from conftest import add_company, add_user


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "app.sqlite"))
    monkeypatch.setenv("APP_SECRET_KEY", "test-secret")
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def seeded(app):
    conn = get_connection(app.config["DB_PATH"])
    try:
        data = {
            "admin": add_user(conn, "admin@example.com", "Alice Admin", "admin"),
            "agent": add_user(conn, "agente@example.com", "Ana Agente", "support_agent"),
            "requester": add_user(conn, "cliente@example.com", "Carlos Cliente", "requester"),
            "other": add_user(conn, "outro@example.com", "Olga Outra", "requester"),
            "company_id": add_company(conn),
        }
    finally:
        conn.close()
    return data


def login(app, email):
    client = app.test_client()
    rv = client.post("/auth/login", json={"email": email, "password": "secret"})
    assert rv.status_code == 200
    return client


def open_ticket(app, seeded):
    client = login(app, "cliente@example.com")
    rv = client.post("/tickets", json={
        "title": "Leitor não liga",
        "description": "Não liga",
        "company_id": seeded["company_id"],
        "category": "hardware",
    })
    assert rv.status_code == 201
    return rv.get_json()["ticket"]["id"]


def test_config_from_environment(app, tmp_path):
    assert app.config["DB_PATH"] == str(tmp_path / "app.sqlite")
    assert app.config["SECRET_KEY"] == "test-secret"
    assert app.config["LOG_TIMEZONE"] == "America/Sao_Paulo"
    assert app.config["TRASH_RETENTION_DAYS"] == 30


def test_health(app):
    rv = app.test_client().get("/health")
    assert rv.status_code == 200
    assert rv.get_json()["status"] == "healthy"


def test_login_and_me(app, seeded):
    client = app.test_client()

    rv = client.post("/auth/login", json={"email": "agente@example.com", "password": "wrong"})
    assert rv.status_code == 401

    rv = client.post("/auth/login", json={"email": "agente@example.com"})
    assert rv.status_code == 400

    client = login(app, "agente@example.com")
    me = client.get("/auth/me").get_json()["user"]
    assert me["full_name"] == "Ana Agente"
    assert me["is_agent"] is True

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_requires_login(app, seeded):
    rv = app.test_client().get("/tickets")
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "Unauthorized"


def test_rma_endpoints_are_for_agents(app, seeded):
    client = login(app, "cliente@example.com")
    assert client.get("/rma").status_code == 403


def test_requester_cannot_read_other_tickets(app, seeded):
    ticket_id = open_ticket(app, seeded)

    other = login(app, "outro@example.com")
    rv = other.get(f"/tickets/{ticket_id}")
    assert rv.status_code == 403
    assert other.get("/tickets").get_json()["tickets"] == []


def test_rma_workflow_over_http(app, seeded):
    ticket_id = open_ticket(app, seeded)
    agent = login(app, "agente@example.com")

    rv = agent.post(f"/tickets/{ticket_id}/rma")
    assert rv.status_code == 201
    body = rv.get_json()
    rma_id = body["rma"]["id"]
    first_step = body["steps"][0]["id"]

    rv = agent.post(f"/rma/{rma_id}/steps/{first_step}", json={"completed": True})
    assert rv.status_code == 400
    assert rv.get_json() == {"error": "ValidationError", "details": "RMA number required"}

    rv = agent.post(f"/rma/{rma_id}/steps/{first_step}", json={"completed": True, "rma_number": "RMA-1001"})
    assert rv.status_code == 200
    assert rv.get_json()["rma"]["rma_number"] == "RMA-1001"

    rv = agent.get(f"/rma/{rma_id}/steps/missing")
    assert rv.status_code == 405
    rv = agent.post(f"/rma/{rma_id}/steps/missing", json={"completed": True})
    assert rv.status_code == 404

    listing = agent.get("/rma?search=1001").get_json()
    assert listing["summary"]["total"] == 1
    assert listing["rmas"][0]["completed_steps"] == 1

    activity = agent.get(f"/tickets/{ticket_id}/activity").get_json()["activity"]
    kinds = [entry["action_type"] for entry in activity if entry["type"] == "log"]
    assert kinds == ["general", "rma_creation", "assignment_change"]

    rv = agent.delete(f"/rma/{rma_id}")
    assert rv.status_code == 200
    assert agent.get(f"/rma/{rma_id}").status_code == 404


def test_messages_over_http(app, seeded):
    ticket_id = open_ticket(app, seeded)
    requester = login(app, "cliente@example.com")

    rv = requester.post(f"/tickets/{ticket_id}/messages", json={"content": "   "})
    assert rv.status_code == 400

    rv = requester.post(f"/tickets/{ticket_id}/messages", json={"content": "Alguma novidade?"})
    assert rv.status_code == 201
    activity = rv.get_json()["activity"]
    assert activity[-1]["content"] == "Alguma novidade?"
    assert activity[-1]["alignment"] == "right"
    assert activity[-1]["sender_type"] == "requester"

    agent_view = login(app, "agente@example.com").get(f"/tickets/{ticket_id}/messages").get_json()
    assert agent_view["messages"][0]["is_internal"] is False


def test_non_string_fields_are_rejected(app, seeded):
    ticket_id = open_ticket(app, seeded)
    agent = login(app, "agente@example.com")
    body = agent.post(f"/tickets/{ticket_id}/rma").get_json()
    rma_id = body["rma"]["id"]
    first_step, last_step = body["steps"][0]["id"], body["steps"][8]["id"]

    rv = agent.post(f"/rma/{rma_id}/steps/{first_step}", json={"completed": True, "rma_number": 1001})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"
    assert agent.get(f"/rma/{rma_id}").get_json()["rma"]["rma_number"] is None

    rv = agent.post(f"/rma/{rma_id}/steps/{last_step}", json={"completed": False, "functionality_notes": 3})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"

    rv = agent.post(f"/rma/{rma_id}/functionality-notes", json={"notes": 5})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"

    rv = agent.post(f"/tickets/{ticket_id}/messages", json={"content": 42})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"

    rv = agent.patch(f"/tickets/{ticket_id}", json={"title": ["Leitor"]})
    assert rv.status_code == 400

    rv = agent.post(f"/tickets/{ticket_id}/assign", json={"assigned_to": 7})
    assert rv.status_code == 400

    requester = login(app, "cliente@example.com")
    rv = requester.post("/tickets", json={
        "title": 10, "description": "Não liga", "company_id": seeded["company_id"], "category": "hardware",
    })
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"

    rv = app.test_client().post("/auth/login", json={"email": ["agente@example.com"], "password": "secret"})
    assert rv.status_code == 400


def test_notes_rejected_after_closing_step_over_http(app, seeded):
    ticket_id = open_ticket(app, seeded)
    agent = login(app, "agente@example.com")
    body = agent.post(f"/tickets/{ticket_id}/rma").get_json()
    rma_id = body["rma"]["id"]

    assert agent.post(f"/rma/{rma_id}/steps/{body['steps'][8]['id']}", json={"completed": True}).status_code == 200

    rv = agent.post(f"/rma/{rma_id}/functionality-notes", json={"notes": "Ventoinha com ruído"})
    assert rv.status_code == 400
    assert rv.get_json()["details"] == "Closing step is already completed"


def test_directory_over_http(app, seeded):
    requester = login(app, "cliente@example.com")
    assert requester.post("/companies", json={"name": "Beta"}).status_code == 403

    agent = login(app, "agente@example.com")
    assert agent.post("/companies", json=["Beta"]).status_code == 400
    assert agent.post("/companies", json={"name": 5}).status_code == 400

    rv = agent.post("/companies", json={"name": "Beta Indústria", "primary_email": "compras@beta.example"})
    assert rv.status_code == 201
    company_id = rv.get_json()["company"]["id"]

    rv = agent.post(f"/companies/{company_id}/contacts", json={"name": "Maria Souza", "position": "Compras"})
    assert rv.status_code == 201
    contact_id = rv.get_json()["contact"]["id"]

    rv = agent.post("/equipment-models", json={"name": "Leitor X-200", "manufacturer": "Acme"})
    assert rv.status_code == 201
    model_id = rv.get_json()["equipment_model"]["id"]

    names = [c["name"] for c in requester.get("/companies?search=beta").get_json()["companies"]]
    assert names == ["Beta Indústria"]
    contacts = requester.get(f"/companies/{company_id}/contacts").get_json()["contacts"]
    assert [c["id"] for c in contacts] == [contact_id]

    rv = requester.post("/tickets", json={
        "title": "Leitor não liga",
        "description": "Não liga",
        "company_id": company_id,
        "contact_id": contact_id,
        "equipment_model_id": model_id,
        "category": "hardware",
    })
    assert rv.status_code == 201
    assert rv.get_json()["ticket"]["company_name"] == "Beta Indústria"

    rv = agent.patch(f"/contacts/{contact_id}", json={"phone": "+55 11 90000-0000"})
    assert rv.get_json()["contact"]["phone"] == "+55 11 90000-0000"
    rv = agent.patch(f"/equipment-models/{model_id}", json={"category": "hardware"})
    assert rv.get_json()["equipment_model"]["category"] == "hardware"
    rv = agent.patch(f"/companies/{company_id}", json={"notes": "Cliente desde 2020"})
    assert rv.get_json()["company"]["notes"] == "Cliente desde 2020"

    assert agent.delete(f"/contacts/{contact_id}").status_code == 200
    assert agent.delete(f"/equipment-models/{model_id}").status_code == 200
    assert agent.delete(f"/companies/{company_id}").status_code == 200
    assert agent.get(f"/companies/{company_id}").status_code == 404
    assert agent.delete(f"/companies/{company_id}").status_code == 404

    admin = login(app, "admin@example.com")
    trashed = [item["id"] for item in admin.get("/trash/companies").get_json()["items"]]
    assert trashed == [company_id]


def test_ticket_summary_and_status_filter(app, seeded):
    ticket_id = open_ticket(app, seeded)
    open_ticket(app, seeded)
    agent = login(app, "agente@example.com")
    agent.post(f"/tickets/{ticket_id}/status", json={"status": "paused"})

    counts = agent.get("/tickets/summary").get_json()["counts"]
    assert counts == {"open": 1, "in_progress": 0, "paused": 1, "closed": 0, "total": 2}

    paused = agent.get("/tickets?status=paused").get_json()["tickets"]
    assert [t["id"] for t in paused] == [ticket_id]
    assert agent.get("/tickets?status=bogus").status_code == 400

    assert login(app, "outro@example.com").get("/tickets/summary").get_json()["counts"]["total"] == 0


def test_rmas_of_trashed_tickets_leave_the_listing(app, seeded):
    ticket_id = open_ticket(app, seeded)
    agent = login(app, "agente@example.com")
    assert agent.post(f"/tickets/{ticket_id}/rma").status_code == 201
    assert agent.get("/rma").get_json()["summary"]["total"] == 1

    admin = login(app, "admin@example.com")
    assert admin.post(f"/trash/tickets/{ticket_id}/delete").status_code == 200

    listing = agent.get("/rma").get_json()
    assert listing["rmas"] == []
    assert listing["summary"]["total"] == 0


def test_status_change_needs_agent(app, seeded):
    ticket_id = open_ticket(app, seeded)

    requester = login(app, "cliente@example.com")
    assert requester.post(f"/tickets/{ticket_id}/status", json={"status": "closed"}).status_code == 403

    agent = login(app, "agente@example.com")
    rv = agent.post(f"/tickets/{ticket_id}/status", json={"status": "closed"})
    assert rv.status_code == 200
    assert rv.get_json()["ticket"]["status"] == "closed"

    rv = agent.post(f"/tickets/{ticket_id}/status", json={"status": "bogus"})
    assert rv.status_code == 400


def test_trash_is_for_admins(app, seeded):
    ticket_id = open_ticket(app, seeded)

    agent = login(app, "agente@example.com")
    assert agent.get("/trash/tickets").status_code == 403

    admin = login(app, "admin@example.com")
    assert admin.get("/trash/unknown").status_code == 400
    assert admin.post(f"/trash/tickets/{ticket_id}/delete").status_code == 200
    assert [i["id"] for i in admin.get("/trash/tickets").get_json()["items"]] == [ticket_id]
    assert admin.get(f"/tickets/{ticket_id}").status_code == 404
    assert admin.post(f"/trash/tickets/{ticket_id}/restore").status_code == 200

    rv = admin.post("/trash/empty")
    assert rv.status_code == 200
    assert rv.get_json()["removed"]["tickets"] == 0


def test_unknown_route_returns_json(app):
    rv = app.test_client().get("/nope")
    assert rv.status_code == 404
    assert rv.get_json()["error"] == "NotFound"


def test_monitoring_endpoints(app, seeded):
    client = app.test_client()
    client.get("/health")

    rv = client.get("/monitoring/metrics")
    assert rv.status_code == 200
    assert b"supportdesk_http_requests_total" in rv.data

    assert client.get("/monitoring/api/health").status_code in (200, 503)
    data = client.get("/monitoring/api/metrics").get_json()
    assert data["status"] == "success"
    assert "rma" in data["data"]


def test_recent_logs_read_from_log_file(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "app.sqlite"))
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "app.log"))
    client = create_app().test_client()

    client.get("/health", headers={"X-Request-Id": "req-123"})
    data = client.get("/monitoring/api/logs/recent").get_json()

    assert data["status"] == "success"
    assert any(entry.get("request_id") == "req-123" for entry in data["logs"])
