"""Company, contact and equipment model API Routes"""

from flask import Blueprint, current_app, jsonify, request

from ..auth import agent_required, login_required
from ..db import get_connection
from ..errors import SupportDeskError
from ..observability.metrics_collector import metrics_collector
from ..observability.structured_logger import app_logger
from .manager import CompanyManager, ContactManager, EquipmentModelManager

companies_bp = Blueprint("companies", __name__, url_prefix="/companies")
contacts_bp = Blueprint("contacts", __name__, url_prefix="/contacts")
equipment_bp = Blueprint("equipment_models", __name__, url_prefix="/equipment-models")


def get_conn():
    """Get database connection."""
    return get_connection(current_app.config["DB_PATH"])


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _handle(work, failure, status=200):
    """Run ``work(conn)`` and map its result or error to a JSON response."""
    conn = get_conn()
    try:
        return jsonify({"success": True, **work(conn)}), status
    except SupportDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        app_logger.error(failure, exception=str(e), exception_type=type(e).__name__)
        return jsonify({"error": "ServerError", "details": str(e)}), 500
    finally:
        conn.close()


def _bad_body():
    return jsonify({"error": "BadRequest", "details": "JSON object body required"}), 400


# =============================
# Companies
# =============================

@companies_bp.route("", methods=["GET"])
@login_required
def list_companies():
    """GET /companies?search=<name>"""
    search = request.args.get("search")
    return _handle(
        lambda conn: {"companies": CompanyManager(conn).list_all(search=search)},
        "Failed to list companies",
    )


@companies_bp.route("", methods=["POST"])
@agent_required
def create_company():
    """
    POST /companies
    Body: {
        "name": "Acme Ltda",
        "primary_email": "contato@acme.example",
        "whatsapp_phone": "+55 11 99999-0000",
        "notes": "..."
    }
    """
    data = _json_body()
    if data is None:
        return _bad_body()

    def work(conn):
        fields = dict(data)
        company = CompanyManager(conn).create(fields.pop("name", None), **fields)
        metrics_collector.increment_counter("companies_created_total")
        return {"company": company}

    return _handle(work, "Failed to create company", status=201)


@companies_bp.route("/<company_id>", methods=["GET"])
@login_required
def get_company(company_id):
    return _handle(
        lambda conn: {"company": CompanyManager(conn).get(company_id)},
        "Failed to load company",
    )


@companies_bp.route("/<company_id>", methods=["PATCH"])
@agent_required
def update_company(company_id):
    data = _json_body()
    if data is None:
        return _bad_body()
    return _handle(
        lambda conn: {"company": CompanyManager(conn).update(company_id, data)},
        "Failed to update company",
    )


@companies_bp.route("/<company_id>", methods=["DELETE"])
@agent_required
def delete_company(company_id):
    def work(conn):
        CompanyManager(conn).delete(company_id)
        return {"message": "Empresa enviada para a lixeira"}

    return _handle(work, "Failed to delete company")


@companies_bp.route("/<company_id>/contacts", methods=["GET"])
@login_required
def list_contacts(company_id):
    search = request.args.get("search")
    return _handle(
        lambda conn: {"contacts": ContactManager(conn).list_for_company(company_id, search=search)},
        "Failed to list contacts",
    )


@companies_bp.route("/<company_id>/contacts", methods=["POST"])
@agent_required
def create_contact(company_id):
    """
    POST /companies/<company_id>/contacts
    Body: {"name": "Maria Souza", "email": "...", "phone": "...", "position": "Compras"}
    """
    data = _json_body()
    if data is None:
        return _bad_body()

    def work(conn):
        fields = dict(data, company_id=company_id)
        contact = ContactManager(conn).create(fields.pop("name", None), **fields)
        metrics_collector.increment_counter("contacts_created_total")
        return {"contact": contact}

    return _handle(work, "Failed to create contact", status=201)


# =============================
# Contacts
# =============================

@contacts_bp.route("/<contact_id>", methods=["PATCH"])
@agent_required
def update_contact(contact_id):
    data = _json_body()
    if data is None:
        return _bad_body()
    return _handle(
        lambda conn: {"contact": ContactManager(conn).update(contact_id, data)},
        "Failed to update contact",
    )


@contacts_bp.route("/<contact_id>", methods=["DELETE"])
@agent_required
def delete_contact(contact_id):
    def work(conn):
        ContactManager(conn).delete(contact_id)
        return {"message": "Contato enviado para a lixeira"}

    return _handle(work, "Failed to delete contact")


# =============================
# Equipment models
# =============================

@equipment_bp.route("", methods=["GET"])
@login_required
def list_equipment_models():
    search = request.args.get("search")
    return _handle(
        lambda conn: {"equipment_models": EquipmentModelManager(conn).list_all(search=search)},
        "Failed to list equipment models",
    )


@equipment_bp.route("", methods=["POST"])
@agent_required
def create_equipment_model():
    """
    POST /equipment-models
    Body: {"name": "Leitor X-200", "manufacturer": "Acme", "category": "hardware", "description": "..."}
    """
    data = _json_body()
    if data is None:
        return _bad_body()

    def work(conn):
        fields = dict(data)
        model = EquipmentModelManager(conn).create(fields.pop("name", None), **fields)
        metrics_collector.increment_counter("equipment_models_created_total")
        return {"equipment_model": model}

    return _handle(work, "Failed to create equipment model", status=201)


@equipment_bp.route("/<model_id>", methods=["PATCH"])
@agent_required
def update_equipment_model(model_id):
    data = _json_body()
    if data is None:
        return _bad_body()
    return _handle(
        lambda conn: {"equipment_model": EquipmentModelManager(conn).update(model_id, data)},
        "Failed to update equipment model",
    )


@equipment_bp.route("/<model_id>", methods=["DELETE"])
@agent_required
def delete_equipment_model(model_id):
    def work(conn):
        EquipmentModelManager(conn).delete(model_id)
        return {"message": "Modelo enviado para a lixeira"}

    return _handle(work, "Failed to delete equipment model")
