# Overview: Flask API routes for employees and cash advances; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import Employee
from ..validation import ValidationError
from ..services import employee_service


employees_bp = Blueprint("employees", __name__, url_prefix="/api/employees")


@employees_bp.get("/<int:employee_id>")
def get_employee_route(employee_id: int):
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        return jsonify({"error": "Employee not found"}), 404
    return jsonify({"employee": employee.to_dict()}), 200


@employees_bp.post("/<int:employee_id>/advances")
def create_advance_route(employee_id: int):
    data = request.get_json(silent=True) or {}
    try:
        advance = employee_service.record_cash_advance(
            employee_id,
            data.get("amount_cents"),
            description=data.get("description"),
            status=data.get("status") or "active",
        )
        return jsonify({"advance": advance.to_dict()}), 201
    except employee_service.EmployeeNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record cash advance")
        return jsonify({"error": "Internal server error"}), 500


@employees_bp.post("/advances/<int:advance_id>/status")
def update_advance_status_route(advance_id: int):
    """
    Flip a cash advance's status (pending / active / deducted).

    The owner's current_advances_cents is recomputed from all active advances.
    """
    data = request.get_json(silent=True) or {}
    try:
        advance = employee_service.update_cash_advance_status(advance_id, data.get("status"))
        return jsonify({
            "advance": advance.to_dict(),
            "current_advances_cents": advance.employee.current_advances_cents,
        }), 200
    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update cash advance status")
        return jsonify({"error": "Internal server error"}), 500
