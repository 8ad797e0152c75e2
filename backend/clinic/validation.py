from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidInputError
from .time_utils import normalize_hhmm


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Maximum stock count or adjustment; keeps SQLite INTEGER arithmetic in range
MAX_QUANTITY = 1_000_000_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


INVENTORY_ITEM_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name",
        "distributor",
        "strength",
        "unit_price_cents",
        "unit_cost_cents",
        "quantity_on_hand",
        "low_stock_threshold",
    }),
    required_on_create=frozenset({"name", "unit_price_cents", "unit_cost_cents", "quantity_on_hand"}),
)

# Quantity only moves through stock adjustments and sales after creation
INVENTORY_ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=INVENTORY_ITEM_POLICY.writable_fields - {"quantity_on_hand"},
)

ACCOUNT_PROFILE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "phone"}),
)

DOCTOR_PROFILE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "specialization",
        "fee_cents",
        "available_days",
        "available_from",
        "available_to",
    }),
    required_on_create=frozenset({"specialization", "fee_cents"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, name: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and 1e5 notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInputError(f"{name} must be an integer")
        if 'e' in stripped.lower():
            raise InvalidInputError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise InvalidInputError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise InvalidInputError(f"{name} must be an integer")
    if isinstance(value, float):
        raise InvalidInputError(f"{name} must be an integer, not a decimal")
    raise InvalidInputError(f"{name} must be an integer")


def coerce_positive_int(value: Any, name: str, maximum: int = MAX_QUANTITY) -> int:
    number = coerce_int(value, name)
    if number <= 0:
        raise InvalidInputError(f"{name} must be a positive integer")
    if number > maximum:
        raise InvalidInputError(f"{name} cannot exceed {maximum}")
    return number


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise InvalidInputError(f"{col.key} must be a boolean")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # JSON and other types are left for rule functions
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
        raise InvalidInputError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise InvalidInputError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise InvalidInputError(f"Field not allowed: {k}")
        if k not in cols:
            raise InvalidInputError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise InvalidInputError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise InvalidInputError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise InvalidInputError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_inventory_item(patch: dict) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    for key in ("unit_price_cents", "unit_cost_cents"):
        if key in patch:
            amount = patch[key]
            if amount < 0:
                raise InvalidInputError(f"{key} must be >= 0")
            if amount > MAX_PRICE_CENTS:
                raise InvalidInputError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    for key in ("quantity_on_hand", "low_stock_threshold"):
        if key in patch:
            if patch[key] < 0:
                raise InvalidInputError(f"{key} must be >= 0")
            if patch[key] > MAX_QUANTITY:
                raise InvalidInputError(f"{key} cannot exceed {MAX_QUANTITY}")


def enforce_rules_doctor_profile(patch: dict) -> None:
    if "fee_cents" in patch:
        if patch["fee_cents"] <= 0:
            raise InvalidInputError("fee_cents must be > 0")
        if patch["fee_cents"] > MAX_PRICE_CENTS:
            raise InvalidInputError(f"fee_cents cannot exceed {MAX_PRICE_CENTS}")

    if patch.get("available_days") is not None:
        days = patch["available_days"]
        if not isinstance(days, list) or not all(isinstance(d, str) for d in days):
            raise InvalidInputError("available_days must be a list of day names")

    for key in ("available_from", "available_to"):
        if patch.get(key) is not None:
            normalized = normalize_hhmm(patch[key])
            if normalized is None:
                raise InvalidInputError(f"{key} must be HH:MM")
            patch[key] = normalized
