from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from scrapledger.time_utils import normalize_datetime, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models import (
    Transaction,
    TransactionItem,
    TRANSACTION_KINDS,
    TRANSACTION_STATUSES,
    CUSTOMER_KINDS,
    SESSION_TYPES,
)
from .services.pricing import compute_line_total, sum_expense_items


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem. Raised before any write; never retried."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for a full record
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


@dataclass(frozen=True)
class TransactionPayload:
    """
    A save request after validation.

    header: cleaned column values for the transactions row (only keys the
        caller sent, plus derived expenses)
    line_items: cleaned item dicts in position order, or None when the
        caller did not send items at all
    session_images: raw attachment payloads (references or inline data)
    """
    id: str
    header: dict
    line_items: list[dict] | None
    session_images: list[str] | None

    @property
    def kind(self) -> str:
        return self.header["kind"]

    @property
    def status(self) -> str:
        return self.header["status"]

    @property
    def is_draft_checkpoint(self) -> bool:
        """in-progress with no items: must never touch stored items."""
        return self.status == "in-progress" and not self.line_items


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{col.key} must be an integer")

    # Fixed-point quantities (weights)
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{col.key} must be a number")
        if not dec.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        if coltype.scale is not None:
            try:
                dec = dec.quantize(Decimal(1).scaleb(-coltype.scale))
            except InvalidOperation:
                raise ValidationError(f"{col.key} is out of range")
        return dec

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return normalize_datetime(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except Exception:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is (JSON columns are checked by the rule functions)
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_choice(field: str, value: Any, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(choices)}"
        )


# =============================================================================
# Transactions
# =============================================================================

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "id",
        "kind",
        "status",
        "customer_name",
        "customer_kind",
        "employee",
        "location",
        "session_type",
        "expenses_cents",
        "expense_items",
        "timestamp",
    },
    required_on_create={"id", "kind", "status", "employee"},
)

LINE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "category",
        "weight",
        "piece_count",
        "unit_price_cents",
        "line_total_cents",
        "images",
    },
    required_on_create={"name", "unit_price_cents"},
)

# Sent by clients for display; always recomputed on the server
DERIVED_FIELDS = {"subtotal_cents", "total_cents"}

# Legacy boolean pair folded into session_type
LEGACY_SESSION_FLAGS = ("is_pickup", "is_delivery")


def normalize_session_type(payload: dict) -> None:
    """
    Fold is_pickup / is_delivery into the single session_type field (in place).

    Both flags true is a contradiction, as is a flag that disagrees with an
    explicit session_type.
    """
    is_pickup = bool(payload.pop("is_pickup", False))
    is_delivery = bool(payload.pop("is_delivery", False))

    if is_pickup and is_delivery:
        raise ValidationError("A session cannot be both pickup and delivery")

    implied = "pickup" if is_pickup else "delivery" if is_delivery else None
    if implied is None:
        return

    explicit = payload.get("session_type")
    if explicit not in (None, "") and explicit != implied:
        raise ValidationError(
            f"session_type '{explicit}' contradicts legacy flag for '{implied}'"
        )
    payload["session_type"] = implied


def _clean_attachment_list(field: str, value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    for entry in value:
        if not isinstance(entry, str):
            raise ValidationError(f"{field} entries must be strings")
    return [entry for entry in value if entry.strip()]


def _clean_expense_items(value: Any) -> list[dict]:
    if not isinstance(value, list):
        raise ValidationError("expense_items must be a list")

    cleaned = []
    for index, raw in enumerate(value):
        if not isinstance(raw, dict):
            raise ValidationError(f"expense_items[{index}] must be an object")
        amount = raw.get("amount_cents")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"expense_items[{index}].amount_cents must be an integer")
        if amount < 0:
            raise ValidationError(f"expense_items[{index}].amount_cents must be >= 0")
        cleaned.append({
            "type": str(raw.get("type") or "other").strip(),
            "amount_cents": amount,
            "description": str(raw.get("description") or "").strip(),
        })
    return cleaned


def enforce_rules_transaction(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    validate_choice("kind", patch.get("kind"), TRANSACTION_KINDS)
    validate_choice("status", patch.get("status"), TRANSACTION_STATUSES)

    # Ensure customer_kind has a valid default value if missing
    if patch.get("customer_kind") in (None, ""):
        patch.pop("customer_kind", None)
    else:
        validate_choice("customer_kind", patch["customer_kind"], CUSTOMER_KINDS)

    if patch.get("session_type") not in (None, ""):
        validate_choice("session_type", patch["session_type"], SESSION_TYPES)
    elif "session_type" in patch:
        patch["session_type"] = None

    if "expense_items" in patch:
        items = _clean_expense_items(patch["expense_items"] or [])
        patch["expense_items"] = items
        derived = sum_expense_items(items)
        if patch.get("expenses_cents") not in (None, derived) and items:
            raise ValidationError(
                f"expenses_cents {patch['expenses_cents']} does not match expense_items total {derived}"
            )
        if items or patch.get("expenses_cents") is None:
            patch["expenses_cents"] = derived

    if "expenses_cents" in patch:
        expenses = patch["expenses_cents"]
        if expenses is None:
            patch["expenses_cents"] = 0
        elif expenses < 0:
            raise ValidationError("expenses_cents must be >= 0")
        elif expenses > MAX_PRICE_CENTS:
            raise ValidationError(f"expenses_cents cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_line_item(patch: dict, *, position: int) -> None:
    label = f"line_items[{position}]"

    has_weight = patch.get("weight") is not None
    has_pieces = patch.get("piece_count") is not None
    if has_weight == has_pieces:
        raise ValidationError(f"{label} must have exactly one of weight or piece_count")

    if has_weight and patch["weight"] <= 0:
        raise ValidationError(f"{label}.weight must be > 0")
    if has_pieces and patch["piece_count"] <= 0:
        raise ValidationError(f"{label}.piece_count must be > 0")

    price = patch["unit_price_cents"]
    if price < 0:
        raise ValidationError(f"{label}.unit_price_cents must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{label}.unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

    # The stored line total is authoritative only when it matches quantity x price
    patch["line_total_cents"] = compute_line_total(
        weight=patch.get("weight"),
        piece_count=patch.get("piece_count"),
        unit_price_cents=price,
    )
    patch["images"] = _clean_attachment_list(f"{label}.images", patch.get("images"))
    patch["position"] = position


def clean_transaction_payload(payload: Any) -> TransactionPayload:
    """
    Validate a full save request. Raises ValidationError before anything is
    written or uploaded.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    data = dict(payload)
    raw_items = data.pop("line_items", None)
    items_sent = "line_items" in payload
    raw_images = data.pop("session_images", None)
    images_sent = "session_images" in payload
    for field in DERIVED_FIELDS:
        data.pop(field, None)

    normalize_session_type(data)

    # Blank customer_kind means "use the column default"
    if data.get("customer_kind") in (None, ""):
        data.pop("customer_kind", None)

    header = validate_payload(
        model=Transaction,
        payload=data,
        policy=TRANSACTION_POLICY,
        partial=False,
    )
    enforce_rules_transaction(header)

    line_items = None
    if items_sent:
        if raw_items is None:
            raw_items = []
        if not isinstance(raw_items, list):
            raise ValidationError("line_items must be a list")
        line_items = []
        for position, raw_item in enumerate(raw_items):
            if not isinstance(raw_item, dict):
                raise ValidationError(f"line_items[{position}] must be an object")
            item = validate_payload(
                model=TransactionItem,
                payload=raw_item,
                policy=LINE_ITEM_POLICY,
                partial=False,
            )
            enforce_rules_line_item(item, position=position)
            line_items.append(item)

    session_images = _clean_attachment_list("session_images", raw_images) if images_sent else None

    return TransactionPayload(
        id=header["id"],
        header=header,
        line_items=line_items,
        session_images=session_images,
    )
