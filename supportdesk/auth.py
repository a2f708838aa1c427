"""
Authentication and the per-session user context.

Credentials are verified once at login; the resulting ``SessionContext``
(user id, email, profile name and role) is stored in the Flask session and
loaded into ``g.current_user`` before every request. Signing out clears it.
"""

from __future__ import annotations
import sqlite3
from dataclasses import asdict, dataclass
from functools import wraps
from typing import Optional

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from .db import get_connection, new_id, to_iso, utcnow
from .errors import ValidationError
from .observability.structured_logger import app_logger

AGENT_ROLES = ("admin", "support_agent")

SESSION_KEY = "auth"

bp = Blueprint("auth", __name__, url_prefix="/auth")


@dataclass
class SessionContext:
    user_id: str
    email: str
    full_name: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_agent(self) -> bool:
        return self.role in AGENT_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Usuário"

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["SessionContext"]:
        if not data or not data.get("user_id"):
            return None
        return cls(
            user_id=data["user_id"],
            email=data.get("email"),
            full_name=data.get("full_name"),
            role=data.get("role"),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["is_agent"] = self.is_agent
        return data


def create_user(conn: sqlite3.Connection, email: str, password: str,
                full_name: str = None, role: str = "requester") -> str:
    """Insert a user and its profile; returns the user id. Does not commit."""
    if not email or not email.strip():
        raise ValidationError("Email is required")
    if not password:
        raise ValidationError("Password is required")

    user_id = new_id()
    now = to_iso(utcnow())
    conn.execute(
        "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
        (user_id, email.strip().lower(), generate_password_hash(password, method="pbkdf2:sha256"), now),
    )
    conn.execute("""
        INSERT INTO user_profiles (id, user_id, full_name, role, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (new_id(), user_id, full_name, role, now, now))
    return user_id


def authenticate(conn: sqlite3.Connection, email: str, password: str) -> Optional[SessionContext]:
    """Verify credentials and build the session context, or return None."""
    row = conn.execute("""
        SELECT u.id, u.email, u.password_hash, p.full_name, p.role
        FROM users u
        LEFT JOIN user_profiles p ON p.user_id = u.id
        WHERE u.email = ?
    """, ((email or "").strip().lower(),)).fetchone()

    if not row:
        return None
    try:
        if not check_password_hash(row["password_hash"], password or ""):
            return None
    except ValueError:
        # Unsupported hash method stored for this account
        return None

    return SessionContext(
        user_id=row["id"],
        email=row["email"],
        full_name=row["full_name"],
        role=row["role"],
    )


def load_session_context():
    """before_request hook: expose the session context as ``g.current_user``."""
    g.current_user = SessionContext.from_dict(session.get(SESSION_KEY))


def current_user() -> Optional[SessionContext]:
    return getattr(g, "current_user", None)


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return jsonify({"error": "Unauthorized", "details": "Login required"}), 401
        return f(*args, **kwargs)
    return decorated


def agent_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if user is None:
            return jsonify({"error": "Unauthorized", "details": "Login required"}), 401
        if not user.is_agent:
            return jsonify({"error": "Forbidden", "details": "Support agent role required"}), 403
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if user is None:
            return jsonify({"error": "Unauthorized", "details": "Login required"}), 401
        if not user.is_admin:
            return jsonify({"error": "Forbidden", "details": "Admin role required"}), 403
        return f(*args, **kwargs)
    return decorated


@bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or request.form
    email = data.get("email", "")
    password = data.get("password", "")

    if not email or not password:
        return jsonify({"error": "BadRequest", "details": "email and password are required"}), 400
    if not isinstance(email, str) or not isinstance(password, str):
        return jsonify({"error": "ValidationError", "details": "email and password must be strings"}), 400

    conn = get_connection(current_app.config["DB_PATH"])
    try:
        context = authenticate(conn, email, password)
    finally:
        conn.close()

    if context is None:
        app_logger.warning("Failed login attempt", email=email)
        return jsonify({"error": "Unauthorized", "details": "Invalid credentials"}), 401

    session.clear()
    session[SESSION_KEY] = asdict(context)
    g.current_user = context
    app_logger.info("User logged in", user_id=context.user_id, role=context.role)

    return jsonify({"success": True, "user": context.to_dict()}), 200


@bp.route("/logout", methods=["POST"])
def logout():
    user = current_user()
    session.pop(SESSION_KEY, None)
    g.current_user = None
    if user:
        app_logger.info("User logged out", user_id=user.user_id)
    return jsonify({"success": True}), 200


@bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": current_user().to_dict()}), 200
