# Overview: Flask API routes for transactions; parses input and returns JSON responses.

"""
Transaction API Routes

- POST /api/transactions/next-id        - allocate the next transaction id
- PUT  /api/transactions/:id            - full save (header + line items + images)
- GET  /api/transactions/:id            - read one transaction with its items
- DELETE /api/transactions/:id          - delete a non-completed transaction
- POST /api/transactions/:id/status     - narrow status path (no line items)

Error mapping:
    400: validation error (missing/invalid field)
    404: no such transaction
    409: illegal lifecycle move or ledger integrity violation
    503: save retries exhausted; the client must not assume it was saved
    500: anything else
"""

from flask import Blueprint, request, jsonify, current_app

from ..models import TRANSACTION_STATUSES
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError
from ..services import lifecycle_service, sequence_service
from ..services.ledger_service import LedgerIntegrityError
from ..services.lifecycle_service import LifecycleError, TransactionNotFound, TransitionNotAuthorized
from ..services.transaction_repository import SaveFailedError, get_repository


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("/next-id")
def next_transaction_id_route():
    try:
        return jsonify({"id": sequence_service.next_transaction_id()}), 201
    except Exception:
        current_app.logger.exception("Failed to allocate transaction id")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.put("/<string:txn_id>")
def save_transaction_route(txn_id: str):
    """
    Save a transaction.

    The id in the URL wins; a conflicting id in the body is rejected.

    Response:
        {"transaction": {..., "line_items": [...]}}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    if data.get("id") not in (None, txn_id):
        return jsonify({"error": "Body id does not match URL id"}), 400
    data["id"] = txn_id

    try:
        transaction = get_repository().save(data)
        return jsonify({"transaction": transaction}), 200

    except LifecycleError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaveFailedError:
        current_app.logger.exception("Transaction %s could not be saved", txn_id)
        return jsonify({"error": "Could not save transaction; please retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to save transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<string:txn_id>")
def get_transaction_route(txn_id: str):
    txn = get_repository().get(txn_id)
    if txn is None:
        return jsonify({"error": "Transaction not found"}), 404
    return jsonify({"transaction": txn.to_dict(include_items=True)}), 200


@transactions_bp.delete("/<string:txn_id>")
def delete_transaction_route(txn_id: str):
    try:
        if not get_repository().delete(txn_id):
            return jsonify({"error": "Transaction not found"}), 404
        return jsonify({"deleted": txn_id}), 200
    except LifecycleError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<string:txn_id>/status")
def update_status_route(txn_id: str):
    """
    Move a transaction through its lifecycle.

    Request:
        {"status": "completed", "completed_at": "2024-05-01T10:00:00Z", "actor_role": "owner"}

    Error responses:
        400: invalid status / completed_at
        403: settlement without a settlement role
        404: transaction not found
        409: illegal transition or ledger integrity violation
    """
    data = request.get_json(silent=True) or {}
    new_status = data.get("status")
    if not new_status:
        return jsonify({"error": "status is required"}), 400
    if new_status not in TRANSACTION_STATUSES:
        return jsonify({"error": f"Invalid status '{new_status}'"}), 400

    try:
        completed_at = parse_iso_datetime(data.get("completed_at"))
    except Exception:
        return jsonify({"error": "completed_at must be an ISO-8601 datetime"}), 400

    try:
        txn = lifecycle_service.update_status(
            txn_id,
            new_status,
            completed_at=completed_at,
            actor_role=data.get("actor_role"),
        )
        return jsonify({"transaction": txn.to_dict()}), 200

    except TransactionNotFound as e:
        return jsonify({"error": str(e)}), 404
    except TransitionNotAuthorized as e:
        return jsonify({"error": str(e)}), 403
    except (LifecycleError, LedgerIntegrityError) as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update transaction status")
        return jsonify({"error": "Internal server error"}), 500
