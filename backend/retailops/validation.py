from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from .errors import ValidationError
from .time_utils import parse_iso_datetime


DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 200


def coerce_int(value: Any, name: str) -> int:
    """Strict integer coercion: rejects bools, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped and "e" not in stripped.lower() and "." not in stripped:
            try:
                return int(stripped)
            except ValueError:
                pass
    raise ValidationError.for_field(name, f"{name} must be an integer")


def query_int(
    args: Mapping,
    name: str,
    *,
    default: int | None = None,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    value = coerce_int(raw, name)
    if minimum is not None and value < minimum:
        raise ValidationError.for_field(name, f"{name} must be at least {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError.for_field(name, f"{name} must be at most {maximum}")
    return value


def query_datetime(args: Mapping, name: str) -> datetime | None:
    raw = args.get(name)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError.for_field(name, f"{name} must be an ISO-8601 datetime")


def pagination(args: Mapping) -> tuple[int, int]:
    page = query_int(args, "page", default=1, minimum=1)
    per_page = query_int(args, "per_page", default=DEFAULT_PER_PAGE, minimum=1, maximum=MAX_PER_PAGE)
    return page, per_page


def page_meta(page: int, per_page: int, total: int) -> dict:
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page if per_page else 0,
    }
