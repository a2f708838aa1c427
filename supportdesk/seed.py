#!/usr/bin/env python3
"""Seed a local database with demo accounts, a company and a ticket."""

import os
import sys
from pathlib import Path

from .auth import SessionContext, create_user
from .db import get_connection, init_db
from .directory.manager import CompanyManager, ContactManager, EquipmentModelManager
from .tickets.manager import TicketManager

DEMO_USERS = [
    ("admin@example.com", "admin123", "Administrador", "admin"),
    ("agente@example.com", "agente123", "Ana Agente", "support_agent"),
    ("cliente@example.com", "cliente123", "Carlos Cliente", "requester"),
]


def seed_users(conn) -> dict:
    """Insert demo users; returns email -> user id."""
    ids = {}
    for email, password, full_name, role in DEMO_USERS:
        existing = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        if existing:
            ids[email] = existing["id"]
            continue
        ids[email] = create_user(conn, email, password, full_name=full_name, role=role)
        print(f"Inserted user: {email} ({role})")
    conn.commit()
    return ids


def seed_company(conn) -> str:
    existing = conn.execute("SELECT id FROM companies WHERE name = ?", ("Acme Ltda",)).fetchone()
    if existing:
        return existing["id"]

    company = CompanyManager(conn).create("Acme Ltda", primary_email="contato@acme.example")
    ContactManager(conn).create("Maria Souza", company_id=company["id"], position="Compras")
    EquipmentModelManager(conn).create("Leitor X-200", manufacturer="Acme", category="hardware")
    print("Inserted company: Acme Ltda")
    return company["id"]


def seed_ticket(conn, requester_id: str, company_id: str):
    if conn.execute("SELECT 1 FROM tickets LIMIT 1").fetchone():
        return
    requester = SessionContext(requester_id, "cliente@example.com", "Carlos Cliente", "requester")
    TicketManager(conn).create_ticket(
        requester,
        title="Leitor não liga",
        description="O equipamento não liga após queda de energia.",
        company_id=company_id,
        category="hardware",
        equipment_model="Leitor X-200",
        serial_number="X200-0001",
    )
    print("Inserted demo ticket")


def main():
    root = Path(__file__).resolve().parents[1]
    db_path = os.environ.get("APP_DB_PATH", str(root / "app.sqlite"))
    print(f"Seeding database at: {db_path}")

    init_db(db_path)
    conn = get_connection(db_path)
    try:
        ids = seed_users(conn)
        company_id = seed_company(conn)
        seed_ticket(conn, ids["cliente@example.com"], company_id)

        user_count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        ticket_count = conn.execute("SELECT COUNT(*) FROM tickets").fetchone()[0]
        print(f"Total users: {user_count}")
        print(f"Total tickets: {ticket_count}")
    except Exception as e:
        conn.rollback()
        print(f"ERROR: {e}")
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
