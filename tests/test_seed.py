from supportdesk import seed
from supportdesk.auth import authenticate
from supportdesk.db import get_connection


def test_seed_is_idempotent(tmp_path, monkeypatch):
    db_path = str(tmp_path / "app.sqlite")
    monkeypatch.setenv("APP_DB_PATH", db_path)

    seed.main()
    seed.main()

    conn = get_connection(db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 3
        assert conn.execute("SELECT COUNT(*) FROM tickets").fetchone()[0] == 1
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == 1
        assert conn.execute("SELECT COUNT(*) FROM equipment_models").fetchone()[0] == 1
        context = authenticate(conn, "agente@example.com", "agente123")
        assert context is not None and context.is_agent
    finally:
        conn.close()
