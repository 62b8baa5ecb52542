from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

_INFO_RE = re.compile(r"Rows matched:\s*(\d+)\s+Changed:\s*(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class ModificationResult:
    """
    Outcome of one INSERT/UPDATE/UPSERT/DELETE.

    ``changed_rows`` is only meaningful for UPDATE statements.
    """
    affected_rows: int = 0
    insert_id: int = 0
    changed_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "affectedRows": self.affected_rows,
            "insertId": self.insert_id,
            "changedRows": self.changed_rows,
        }


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Plain dict deep copy of a driver row."""
    return {str(key): copy.deepcopy(value) for key, value in row.items()}


def normalize_select(
    rows: Iterable[Mapping[str, Any]],
    want_one: bool,
) -> dict[str, Any] | list[dict[str, Any]] | None:
    """
    ``None`` / ``[]`` for empty results, the first row for "one" queries and
    every row for "all" queries.
    """
    normalized = [normalize_row(row) for row in rows]
    if want_one:
        return normalized[0] if normalized else None
    return normalized


def parse_info(message: Any) -> tuple[int, int] | None:
    """
    (matched, changed) from MySQL's UPDATE info message,
    e.g. ``Rows matched: 3  Changed: 2  Warnings: 0``.
    """
    if isinstance(message, (bytes, bytearray)):
        message = message.decode("utf-8", "replace")
    if not isinstance(message, str):
        return None
    match = _INFO_RE.search(message)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def normalize_modification(ack: Any, info: Any = None) -> ModificationResult:
    """
    Build a ModificationResult from a driver acknowledgement.

    ``ack`` is either a mapping (``affectedRows``/``insertId``/``changedRows``
    or their snake_case forms) or a DB-API style object exposing
    ``rowcount`` and ``lastrowid``. ``info`` is the optional server info
    message used to recover changed rows for UPDATE statements.
    """
    if isinstance(ack, ModificationResult):
        return ack

    if isinstance(ack, Mapping):
        affected = _first(ack, "affectedRows", "affected_rows")
        insert_id = _first(ack, "insertId", "insert_id")
        changed = _first(ack, "changedRows", "changed_rows")
    else:
        affected = getattr(ack, "rowcount", None)
        insert_id = getattr(ack, "lastrowid", None)
        changed = None

    affected = _as_count(affected)
    if changed is None:
        parsed = parse_info(info)
        if parsed:
            # UPDATE: affected rows are the matched rows, as with FOUND_ROWS
            affected, changed = parsed
        else:
            changed = affected

    return ModificationResult(
        affected_rows=affected,
        insert_id=_as_count(insert_id),
        changed_rows=_as_count(changed),
    )


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


def _as_count(value: Any) -> int:
    # DB-API uses -1 (and some drivers None) for "not available"
    if value is None:
        return 0
    value = int(value)
    return value if value > 0 else 0
