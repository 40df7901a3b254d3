import enum
import uuid

from fastapi import HTTPException
from sqlalchemy.exc import DBAPIError, ProgrammingError

_MISSING_TABLE_CODES = {"42P01"}
_PERMISSION_CODES = {"42501"}


def coerce_uuid(value, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field}") from exc


def validate_enum(value, enum_cls: type[enum.Enum], label: str):
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}") from exc


def apply_ordering(query, order_by: str, order_dir: str, allowed_columns: dict):
    if order_by not in allowed_columns:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}",
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query, limit: int | None, offset: int | None):
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query


def _pgcode(exc: BaseException) -> str | None:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, exc):
        code = getattr(candidate, "pgcode", None) or getattr(candidate, "sqlstate", None)
        if code:
            return str(code)
    return None


def is_missing_table_error(exc: BaseException) -> bool:
    """True when the error means the schema has not been migrated yet."""
    if not isinstance(exc, (DBAPIError, ProgrammingError)):
        return False
    if _pgcode(exc) in _MISSING_TABLE_CODES:
        return True
    return "no such table" in str(exc).lower()


def is_permission_error(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if _pgcode(exc) in _PERMISSION_CODES:
        return True
    return "permission denied" in str(exc).lower()
