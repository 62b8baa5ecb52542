from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from pymysql.converters import escape_item

from ..errors import QueryValidationError

CHARSET = "utf8mb4"

# Literal SQL fragments that escape_special() leaves untouched.
PASSTHROUGH_KEYWORDS = frozenset({"current_timestamp", "now()", "is null", "is not null"})

PRIMITIVE_TYPES = (
    str,
    bytes,
    int,
    float,
    Decimal,
    datetime.date,
    datetime.time,
    datetime.timedelta,
)
SEQUENCE_TYPES = (list, tuple, set, frozenset)


@dataclass(frozen=True)
class Raw:
    """
    SQL text inserted into a statement without escaping.

    The caller is responsible for the safety of ``sql``.
    """
    sql: str

    def __str__(self) -> str:
        return self.sql


def is_raw(value: Any) -> bool:
    """True for ``Raw`` instances and the ``{"raw": text}`` marker mapping."""
    if isinstance(value, Raw):
        return True
    return isinstance(value, Mapping) and len(value) == 1 and "raw" in value


def raw_text(value: Any) -> str:
    if isinstance(value, Raw):
        return value.sql
    return str(value["raw"])


def is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (bool,) + PRIMITIVE_TYPES)


def escape(value: Any) -> str:
    """
    Escape a value into MySQL literal syntax.

    Sequences are escaped element-wise and joined with ``", "``; elements
    that are not primitives are dropped.
    """
    if is_raw(value):
        return raw_text(value)
    if isinstance(value, SEQUENCE_TYPES):
        return ", ".join(_escape_scalar(item) for item in value if is_primitive(item))
    if is_primitive(value):
        return _escape_scalar(value)
    raise TypeError(f"Cannot escape value of type {type(value).__name__}")


def escape_special(value: Any) -> str:
    """
    Same as escape(), except that the pass-through keywords
    (``CURRENT_TIMESTAMP``, ``NOW()``, ``IS NULL``, ``IS NOT NULL``) are
    returned as-is.
    """
    if is_passthrough(value):
        return value
    return escape(value)


def is_passthrough(value: Any) -> bool:
    return isinstance(value, str) and value.lower() in PASSTHROUGH_KEYWORDS


def _escape_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and not math.isfinite(value):
        raise QueryValidationError(f"{value!r} cannot be stored in MySQL")
    if isinstance(value, Decimal) and not value.is_finite():
        raise QueryValidationError(f"{value!r} cannot be stored in MySQL")
    return escape_item(value, CHARSET)
