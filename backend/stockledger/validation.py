from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from stockledger.time_utils import parse_iso_date

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, Date
from sqlalchemy.orm import DeclarativeMeta


# Largest quantity accepted from clients (fits Numeric(14, 3))
MAX_QUANTITY = Decimal("99999999999.999")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.field:
            body["field"] = self.field
        return body


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., insufficient stock)."""

    def to_dict(self) -> dict:
        return {"error": str(self)}


class NotFoundError(LookupError):
    """404-level: referenced entity does not exist."""

    def to_dict(self) -> dict:
        return {"error": str(self)}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: request keys clients are allowed to send (security boundary)
    - required_on_create: request keys required for POST
    - aliases: request key -> model column key, when the public name differs
      (e.g. "quantity" -> "original_quantity")
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    aliases: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_decimal(value: Any, key: str) -> Decimal:
    """
    Strict decimal parsing. Floats go through str() so 0.1 stays 0.1 instead of
    its binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", field=key)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be a number", field=key)
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{key} must be a number", field=key)
    else:
        raise ValidationError(f"{key} must be a number", field=key)

    if not result.is_finite():
        raise ValidationError(f"{key} must be a finite number", field=key)
    if abs(result) > MAX_QUANTITY:
        raise ValidationError(f"{key} exceeds maximum {MAX_QUANTITY}", field=key)
    return result


def _coerce_value(col, value: Any, key: str):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer", field=key)
            if 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{key} must be a plain integer", field=key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer", field=key)
        raise ValidationError(f"{key} must be an integer", field=key)

    if isinstance(coltype, Numeric):
        return coerce_decimal(value, key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{key} must be a boolean", field=key)

    if isinstance(coltype, Date):
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)", field=key)
            if d is None:
                raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)", field=key)
            return d
        raise ValidationError(f"{key} must be a date", field=key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            raise ValidationError(f"{key} must be a string", field=key)
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
    Returns a cleaned patch dict keyed by model column names.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if policy.aliases.get(k, k) not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col_key = policy.aliases.get(k, k)
        col = cols[col_key]

        # NULL handling: required request keys may not be null even if the column is
        if raw is None:
            if not col.nullable or k in required:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[col_key] = None
            continue

        val = _coerce_value(col, raw, k)

        # Blank string check for non-nullable or required text fields
        if isinstance(col.type, (String, Text)) and (not col.nullable or k in required):
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[col_key] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "opening_stock" in patch and patch["opening_stock"] is not None:
        if patch["opening_stock"] < 0:
            raise ValidationError("opening_stock must be >= 0", field="opening_stock")


def enforce_rules_stock_movement(patch: dict) -> None:
    # Movements require quantity > 0 in the entered unit
    qty = patch.get("original_quantity")
    if qty is None or qty <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")


def enforce_rules_weekly_plan(patch: dict) -> None:
    qty = patch.get("original_planned_quantity")
    if qty is not None and qty < 0:
        raise ValidationError("planned_quantity must be >= 0", field="planned_quantity")

    start = patch.get("week_start_date")
    end = patch.get("week_end_date")
    if start is not None and end is not None and end < start:
        raise ValidationError("week_end_date must not be before week_start_date", field="week_end_date")


def parse_date_param(args, name: str) -> date | None:
    """Optional YYYY-MM-DD query parameter."""
    raw = args.get(name)
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)", field=name)


def parse_int_param(args, name: str) -> int | None:
    raw = args.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)


def parse_bool_param(args, name: str) -> bool:
    return (args.get(name) or "").strip().lower() in ("1", "true", "yes")
