# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..time_utils import parse_iso_datetime
from ..validation import ValidationError
from ..services import ledger_service

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive: start <= occurred_at <= end.
- Every figure is folded from entries on request; nothing is cached.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _range_args():
    start = parse_iso_datetime(request.args.get("start"))
    end = parse_iso_datetime(request.args.get("end"))
    if start and end and start > end:
        raise ValidationError("start must be before end")
    return start, end


@ledger_bp.get("/balance")
def balance_route():
    try:
        start, end = _range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    return jsonify({"balance_cents": ledger_service.balance(start, end)}), 200


@ledger_bp.get("/subtotals")
def subtotals_route():
    try:
        start, end = _range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    return jsonify({"subtotals": ledger_service.subtotals(start, end)}), 200


@ledger_bp.get("/entries")
def list_entries_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))
    kind = request.args.get("kind") or None

    try:
        start, end = _range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    entries = ledger_service.list_entries(start=start, end=end, kind=kind, limit=limit)
    return jsonify({"items": [e.to_dict() for e in entries], "limit": limit}), 200


# Kinds a client may append directly; transaction effects come from the lifecycle
_APPENDERS = {
    "opening": ledger_service.record_opening_balance,
    "general_expense": ledger_service.record_general_expense,
    "adjustment": ledger_service.record_adjustment,
}


@ledger_bp.post("/entries")
def create_entry_route():
    """
    Append a manual ledger entry.

    Request:
        {"kind": "general_expense", "amount_cents": 1500, "description": "Fuel",
         "employee": "Ana", "occurred_at": "2024-05-01T10:00:00Z"}

    general_expense amounts are given positive and stored negative.
    """
    data = request.get_json(silent=True) or {}
    kind = data.get("kind")
    appender = _APPENDERS.get(kind)
    if appender is None:
        return jsonify({"error": f"kind must be one of: {', '.join(_APPENDERS)}"}), 400

    try:
        occurred_at = parse_iso_datetime(data.get("occurred_at"))
    except Exception:
        return jsonify({"error": "occurred_at must be an ISO-8601 datetime"}), 400

    kwargs = {"employee": data.get("employee"), "occurred_at": occurred_at}
    if data.get("description"):
        kwargs["description"] = str(data["description"]).strip()
    elif kind != "opening":
        return jsonify({"error": "description is required"}), 400

    try:
        entry = appender(data.get("amount_cents"), **kwargs)
        return jsonify({"entry": entry.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to append ledger entry")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/entries/<int:entry_id>/reverse")
def reverse_entry_route(entry_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "reason is required"}), 400

    try:
        entry = ledger_service.reverse_entry(entry_id, reason=reason, employee=data.get("employee"))
        return jsonify({"entry": entry.to_dict()}), 201
    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to reverse ledger entry")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/verify")
def verify_route():
    problems = ledger_service.verify_ledger()
    return jsonify({"ok": not problems, "problems": problems}), 200
