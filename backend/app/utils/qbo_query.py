"""
Building blocks for the QuickBooks Online query language.

Every literal that ends up inside a ``SELECT ... WHERE`` string goes through
``quote`` so that escaping lives in exactly one place.
"""

import re
from datetime import date, datetime
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_.]*$")

MAX_RESULTS_LIMIT = 1000


def escape(value: str) -> str:
    """Escape a raw value for use between single quotes."""
    if not isinstance(value, str):
        value = str(value)
    value = _CONTROL_CHARS.sub("", value)
    # backslash first so the doubled quotes are not re-escaped
    return value.replace("\\", "\\\\").replace("'", "''")


def quote(value) -> str:
    if isinstance(value, (date, datetime)):
        value = value.strftime("%Y-%m-%d")
    return f"'{escape(value)}'"


def _field(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return name


def condition(field: str, op: str, value) -> str:
    if op not in ("=", "<", ">", "<=", ">=", "!=", "LIKE"):
        raise ValueError(f"Unsupported operator: {op}")
    if isinstance(value, bool):
        rendered = "true" if value else "false"
    elif isinstance(value, (int, float)):
        rendered = str(value)
    else:
        rendered = quote(value)
    return f"{_field(field)} {op} {rendered}"


def build_select(
    entity: str,
    conditions: Optional[list[str]] = None,
    fields: str = "*",
    order_by: Optional[str] = None,
    start_position: Optional[int] = None,
    max_results: Optional[int] = None,
) -> str:
    query = f"SELECT {fields} FROM {_field(entity)}"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    if order_by:
        query += f" ORDERBY {order_by}"
    if start_position is not None:
        query += f" STARTPOSITION {max(int(start_position), 1)}"
    if max_results is not None:
        query += f" MAXRESULTS {min(max(int(max_results), 1), MAX_RESULTS_LIMIT)}"
    return query
