"""Input Validators — assertion functions raising ValidationError on failure.

Invariants:
    - Every validator returns None on success and raises ValidationError otherwise
    - details always carry the offending field name plus the violated constraint
    - Missing (None / "") → MISSING_REQUIRED_FIELD; wrong type → INVALID_INPUT;
      length or format → VALIDATION_ERROR

Design Decisions:
    - Plain functions over a schema library so request bodies share error codes
      with every other validation path
    - Pagination helpers live here; they clamp rather than reject out-of-range values
    - Format checks use fullmatch: a trailing newline is not a match
"""

import math
import re
from typing import Any

from chatdesk.core.errors import ErrorCode, ValidationError

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


def required(value: Any, field: str) -> None:
    if value is None or value == "":
        raise ValidationError(
            f"{field} is required", {"field": field},
            code=ErrorCode.MISSING_REQUIRED_FIELD,
        )


def string(
    value: Any, field: str,
    min_length: int | None = None, max_length: int | None = None,
) -> None:
    if not isinstance(value, str):
        raise ValidationError(
            f"{field} must be a string",
            {"field": field, "type": "string", "received": type(value).__name__},
            code=ErrorCode.INVALID_INPUT,
        )
    if min_length is not None and len(value) < min_length:
        raise ValidationError(
            f"{field} must be at least {min_length} characters",
            {"field": field, "min_length": min_length, "current_length": len(value)},
        )
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            {"field": field, "max_length": max_length, "current_length": len(value)},
        )


def email(value: Any, field: str = "email") -> None:
    string(value, field)
    if not _EMAIL_RE.fullmatch(value):
        raise ValidationError(
            "Invalid email format", {"field": field, "format": "email"},
        )


def uuid(value: Any, field: str = "id") -> None:
    string(value, field)
    if not _UUID_RE.fullmatch(value):
        raise ValidationError(
            "Invalid UUID format", {"field": field, "format": "uuid"},
        )


def one_of(value: Any, field: str, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(allowed)}",
            {"field": field, "allowed": list(allowed)},
            code=ErrorCode.INVALID_INPUT,
        )


def sanitize_string(value: str, max_length: int = 1000) -> str:
    """Trim, truncate, and drop angle brackets from free text."""
    trimmed = value.strip()[:max_length]
    return trimmed.replace("<", "").replace(">", "")


async def read_json_body(request) -> dict:
    """Parse the request body as a JSON object or raise INVALID_INPUT."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise ValidationError(
            "Invalid JSON in request body", code=ErrorCode.INVALID_INPUT,
        )
    return body


# -- Pagination ----------------------------------------------------------------

def _int_param(raw: str | None, default: int) -> int:
    """Parsed integer, or default when missing, zero, or unparsable."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value or default


def parse_pagination(query: dict) -> tuple[int, int, int]:
    """Return (page, limit, offset), clamped to page ≥ 1 and 1 ≤ limit ≤ MAX_PAGE_LIMIT."""
    page = max(1, _int_param(query.get("page"), 1))
    limit = min(max(1, _int_param(query.get("limit"), DEFAULT_PAGE_LIMIT)), MAX_PAGE_LIMIT)
    return page, limit, (page - 1) * limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
