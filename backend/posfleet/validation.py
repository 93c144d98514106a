# Overview: Request payload parsing helpers shared by routes and services.

from __future__ import annotations

from typing import Any, Iterable

from .errors import ValidationError
from .time_utils import parse_iso_datetime


def require_fields(data: dict | None, fields: Iterable[str]) -> dict:
    """Raise ValidationError naming every missing (or blank) field."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data


def parse_int(value: Any, field: str, *, required: bool = False, minimum: int | None = None) -> int | None:
    """
    Strict integer parsing.

    Rejects booleans, floats and decimal strings ("12.5", "1e3") rather than
    silently truncating them.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer")
        result = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_bool(value: Any, field: str, *, default: bool | None = None) -> bool | None:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean")


def clean_str(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def parse_date_param(value: str | None, field: str):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_choice(value: Any, field: str, choices: Iterable[str], *, required: bool = True) -> str | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    normalized = str(value).strip().upper()
    allowed = set(choices)
    if normalized not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")
    return normalized
