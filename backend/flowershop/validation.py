from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime

MAX_PAGE_SIZE = 100
_TRUE_WORDS = ("true", "1", "yes")
_FALSE_WORDS = ("false", "0", "no")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which request keys a route accepts and which ones a create must carry.

    Keys that are not columns on the model (unit_price, items, ...) are
    handed to the service untouched.
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, str):
        text = value.strip()
        # digit strings only, so "1e3" and "2.0" fail
        if not text.lstrip("+-").isdigit():
            raise ValidationError(f"{key} must be a plain integer")
        return int(text)
    raise ValidationError(f"{key} must be an integer")


def _coerce(column, value: Any) -> Any:
    kind = column.type
    if isinstance(kind, Integer):
        return _as_int(column.key, value)
    if isinstance(kind, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{column.key} must be a boolean")
        return value
    if isinstance(kind, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{column.key} must be a string")
        value = value.strip()
        if value == "" and not column.nullable:
            raise ValidationError(f"{column.key} cannot be blank")
        limit = getattr(kind, "length", None)
        if limit and len(value) > limit:
            raise ValidationError(f"{column.key} exceeds max length {limit}")
        return value
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """Check a JSON body against the policy and the model's column types.

    Returns a new dict holding only allowed keys, with column-backed values
    coerced (ints, booleans, stripped strings).
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        absent = sorted(set(policy.required_on_create) - set(payload))
        if absent:
            raise ValidationError(f"Missing required fields: {', '.join(absent)}")

    rejected = sorted(set(payload) - set(policy.writable_fields))
    if rejected:
        raise ValidationError(f"Field not allowed: {', '.join(rejected)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    cleaned: dict = {}
    for key, value in payload.items():
        column = columns.get(key)
        if column is None:
            cleaned[key] = value
        elif value is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
        else:
            cleaned[key] = _coerce(column, value)
    return cleaned


# Query string

def parse_int_arg(args, name: str, default: int) -> int:
    raw = args.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def parse_pagination(args, *, default_limit: int = 20) -> tuple[int, int]:
    page = parse_int_arg(args, "page", 1)
    limit = parse_int_arg(args, "limit", default_limit)
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return page, limit


def parse_bool_arg(args, name: str) -> bool | None:
    raw = (args.get(name) or "").strip().lower()
    if not raw:
        return None
    if raw in _TRUE_WORDS:
        return True
    if raw in _FALSE_WORDS:
        return False
    raise ValidationError(f"{name} must be true or false")


def parse_datetime_arg(args, name: str) -> datetime | None:
    try:
        return parse_iso_datetime(args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")
