from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from shopledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money value: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

PRODUCT_TYPES = ("sales", "rental")
CUSTOMER_FEEDBACK_VALUES = ("very_good", "good", "bad")


class ShopError(Exception):
    """Base error carrying a stable code and an HTTP status for the API layer."""

    status_code = 500
    default_code = "INTERNAL"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(ShopError, ValueError):
    """400-level input problem."""

    status_code = 400
    default_code = "INVALID_FIELD"


class NotFoundError(ShopError, LookupError):
    """404-level unresolved product or bill id."""

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(ShopError, ValueError):
    """409-level conflict (duplicate serial, concurrent stock race)."""

    status_code = 409
    default_code = "CONFLICT"


class BusinessRuleError(ShopError, ValueError):
    """400-level domain rule violation (e.g., insufficient stock on a manual decrease)."""

    status_code = 400
    default_code = "BUSINESS_RULE"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_cents(key: str, value: Any, *, allow_negative: bool = False) -> int:
    cents = coerce_int(key, value)
    if cents < 0 and not allow_negative:
        raise ValidationError(f"{key} must be >= 0")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean value", code="INVALID_ISPAID_TYPE" if key == "is_paid" else None)
    return value


def percentage_to_bps(value: Any) -> int:
    """
    Convert a tax percentage (18, "2.5", 12.75) into integer basis points.

    Finer precision than 0.01% is rejected so stored rates are exact.
    """
    if isinstance(value, bool):
        raise ValidationError("tax_percentage must be a number")
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("tax_percentage must be a number")
    if not pct.is_finite():
        raise ValidationError("tax_percentage must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError("tax_percentage must be between 0 and 100")
    bps = pct * 100
    if bps != bps.to_integral_value():
        raise ValidationError("tax_percentage supports at most two decimal places")
    return int(bps)


def coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        return coerce_bool(col.key, value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                code="MISSING_REQUIRED_FIELD",
                details={"fields": missing},
            )

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


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "rate_cents" in patch and patch["rate_cents"] is not None:
        rate = patch["rate_cents"]
        if rate < 0:
            raise ValidationError("rate_cents must be >= 0", code="INVALID_RATE")
        if rate > MAX_AMOUNT_CENTS:
            raise ValidationError(f"rate_cents cannot exceed {MAX_AMOUNT_CENTS}", code="INVALID_RATE")

    if "product_type" in patch and patch["product_type"] not in PRODUCT_TYPES:
        raise ValidationError("Product type must be 'sales' or 'rental'", code="INVALID_PRODUCT_TYPE")

    if "min_stock_level" in patch and patch["min_stock_level"] is not None:
        if patch["min_stock_level"] < 0:
            raise ValidationError("min_stock_level must be >= 0")

    if "stock_quantity" in patch and patch["stock_quantity"] is not None:
        if patch["stock_quantity"] < 0:
            raise ValidationError("stock_quantity must be >= 0", code="INVALID_QUANTITY")
