from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Amount and quantity columns are Numeric(14, places).
DECIMAL_PRECISION = 14

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_CONSUMPTION = "consumption"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"

VALID_MOVEMENT_TYPES = [
    MOVEMENT_PURCHASE,
    MOVEMENT_CONSUMPTION,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
]

DIRECTION_INCREASE = "increase"
DIRECTION_DECREASE = "decrease"

VALID_DIRECTIONS = [DIRECTION_INCREASE, DIRECTION_DECREASE]

# Implied direction per movement type; adjustment has none and must be explicit.
MOVEMENT_DIRECTIONS = {
    MOVEMENT_PURCHASE: DIRECTION_INCREASE,
    MOVEMENT_RETURN: DIRECTION_INCREASE,
    MOVEMENT_CONSUMPTION: DIRECTION_DECREASE,
    MOVEMENT_ADJUSTMENT: None,
}

METHOD_WALLET = "wallet"
METHOD_MOBILE_MONEY = "mobile_money"

SETTLEABLE_METHODS = [METHOD_WALLET, METHOD_MOBILE_MONEY]
LEGACY_METHODS = ["cash", "bank_transfer", "payroll"]


def max_for_column(precision: int, scale: int) -> Decimal:
    """Largest value a Numeric(precision, scale) column can store."""
    return Decimal(10) ** (precision - scale) - Decimal(1).scaleb(-scale)


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def parse_positive_decimal(
    value: Any,
    field: str,
    *,
    places: int = 3,
    precision: int = DECIMAL_PRECISION,
) -> Decimal:
    """
    Parse a strictly positive, finite decimal.

    Accepts Decimal, int, float and numeric strings. Rejects bools, NaN,
    Infinity, zero, negatives, values with more than `places` decimals and
    values too large for a Numeric(precision, places) column.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        parsed = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            parsed = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not parsed.is_finite():
        raise ValidationError(f"{field} must be finite")
    if parsed <= 0:
        raise ValidationError(f"{field} must be > 0")
    limit = max_for_column(precision, places)
    if parsed > limit:
        raise ValidationError(f"{field} cannot exceed {limit}")
    if parsed != parsed.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(f"{field} cannot have more than {places} decimal places")

    return parsed


def normalize_movement_type(value: Any) -> str:
    if not isinstance(value, str) or value.strip().lower() not in VALID_MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type: {value}. Must be one of {VALID_MOVEMENT_TYPES}"
        )
    return value.strip().lower()


def resolve_direction(movement_type: str, direction: Any) -> str:
    """
    Return the effective direction of a movement.

    Adjustments carry an explicit direction; every other type has an implied
    one and may only repeat it.
    """
    implied = MOVEMENT_DIRECTIONS[movement_type]

    if direction is not None:
        if not isinstance(direction, str) or direction.strip().lower() not in VALID_DIRECTIONS:
            raise ValidationError(f"direction must be one of {VALID_DIRECTIONS}")
        direction = direction.strip().lower()

    if implied is None:
        if direction is None:
            raise ValidationError("direction is required for adjustment")
        return direction

    if direction is not None and direction != implied:
        raise ValidationError(f"{movement_type} movements always {implied} stock")
    return implied


def normalize_payment_method(method: Any) -> str:
    if not isinstance(method, str) or not method.strip():
        raise ValidationError("payment_method is required")
    method = method.strip().lower()
    if method in LEGACY_METHODS:
        raise ValidationError(f"Payment method {method} cannot be settled")
    if method not in SETTLEABLE_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {SETTLEABLE_METHODS}"
        )
    return method


def normalize_payment_reference(method: str, reference: Any) -> str | None:
    if reference is not None and not isinstance(reference, str):
        raise ValidationError("payment_reference must be a string")
    reference = (reference or "").strip() or None
    if method == METHOD_MOBILE_MONEY and reference is None:
        raise ValidationError("payment_reference is required for mobile_money")
    if reference is not None and len(reference) > 255:
        raise ValidationError("payment_reference exceeds max length 255")
    return reference


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                raise ValidationError(f"{col.key} must be an integer")
            return int(stripped)
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Numeric):
        return parse_positive_decimal(
            value,
            col.key,
            places=coltype.scale or 0,
            precision=coltype.precision or DECIMAL_PRECISION,
        )

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create
    Returns a cleaned dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    missing = sorted(f for f in required if f not in payload)
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

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_movement(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Normalizes movement_type and direction in place.
    """
    patch["movement_type"] = normalize_movement_type(patch.get("movement_type"))
    patch["direction"] = resolve_direction(patch["movement_type"], patch.get("direction"))


def parse_commission_ids(raw: Any) -> list[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("commission_ids must be a non-empty list")
    ids: list[int] = []
    for value in raw:
        if isinstance(value, bool):
            raise ValidationError("commission_ids must contain integers")
        if isinstance(value, int):
            ids.append(value)
        elif isinstance(value, str) and value.strip().isdigit():
            ids.append(int(value.strip()))
        else:
            raise ValidationError("commission_ids must contain integers")
    return ids
