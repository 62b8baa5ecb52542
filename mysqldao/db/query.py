"""
Statement classification.

A cheap pre-dispatch guard: it looks at the leading verb of a statement (and,
for upserts, the ON DUPLICATE KEY UPDATE clause). It does not parse SQL and
does not check that the statement body is valid.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from ..errors import StatementValidationError


class StatementKind(str, Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    UPSERT = "UPSERT"
    DELETE = "DELETE"


_LEADING_VERB_RE = re.compile(r"^[\s(]*([A-Za-z]+)")
_ON_DUPLICATE_RE = re.compile(r"\bON\s+DUPLICATE\s+KEY\s+UPDATE\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_STATEMENT_VERBS = frozenset({"select", "insert", "update", "delete"})
_TABLE_RE = {
    StatementKind.SELECT: re.compile(r"\bFROM\s+(`?[\w$.]+`?)", re.IGNORECASE),
    StatementKind.INSERT: re.compile(r"^\s*INSERT\s+(?:IGNORE\s+)?(?:INTO\s+)?(`?[\w$.]+`?)", re.IGNORECASE),
    StatementKind.UPSERT: re.compile(r"^\s*INSERT\s+(?:IGNORE\s+)?(?:INTO\s+)?(`?[\w$.]+`?)", re.IGNORECASE),
    StatementKind.UPDATE: re.compile(r"^\s*UPDATE\s+(?:LOW_PRIORITY\s+|IGNORE\s+)*(`?[\w$.]+`?)", re.IGNORECASE),
    StatementKind.DELETE: re.compile(r"\bFROM\s+(`?[\w$.]+`?)", re.IGNORECASE),
}


@dataclass(frozen=True)
class Classification:
    is_select: bool = False
    is_insert: bool = False
    is_update: bool = False
    is_upsert: bool = False
    is_delete: bool = False

    @property
    def kind(self) -> StatementKind | None:
        for kind, flag in (
            (StatementKind.SELECT, self.is_select),
            (StatementKind.INSERT, self.is_insert),
            (StatementKind.UPDATE, self.is_update),
            (StatementKind.UPSERT, self.is_upsert),
            (StatementKind.DELETE, self.is_delete),
        ):
            if flag:
                return kind
        return None


def _leading_verb(sql: str) -> str:
    if not isinstance(sql, str):
        return ""
    match = _LEADING_VERB_RE.match(sql)
    if not match:
        return ""
    verb = match.group(1).lower()
    if verb == "with":
        return _verb_after_cte(sql[match.end():])
    return verb


def _verb_after_cte(sql: str) -> str:
    """
    First top-level statement verb after ``WITH`` common table expressions.

    CTE bodies and column lists sit inside parentheses; quoted text is
    skipped so keywords inside literals do not count.
    """
    depth = 0
    quote = None
    index = 0
    while index < len(sql):
        char = sql[index]
        if quote is not None:
            if char == "\\" and quote != "`":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in ("'", '"', "`"):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0:
            match = _WORD_RE.match(sql, index)
            if match:
                word = match.group(0).lower()
                if word in _STATEMENT_VERBS:
                    return word
                index = match.end()
                continue
        index += 1
    return ""


def classify(sql: str) -> Classification:
    verb = _leading_verb(sql)
    if verb == "select":
        return Classification(is_select=True)
    if verb == "insert":
        if _ON_DUPLICATE_RE.search(sql):
            return Classification(is_upsert=True)
        return Classification(is_insert=True)
    if verb == "update":
        return Classification(is_update=True)
    if verb == "delete":
        return Classification(is_delete=True)
    return Classification()


def statement_kind(sql: str) -> StatementKind | None:
    return classify(sql).kind


def is_select(sql: str) -> bool:
    return classify(sql).is_select


def is_insert(sql: str) -> bool:
    return classify(sql).is_insert


def is_update(sql: str) -> bool:
    return classify(sql).is_update


def is_upsert(sql: str) -> bool:
    return classify(sql).is_upsert


def is_delete(sql: str) -> bool:
    return classify(sql).is_delete


def validate(sql: str, expected: StatementKind) -> None:
    """Raise StatementValidationError unless ``sql`` classifies as ``expected``."""
    if statement_kind(sql) is not expected:
        raise StatementValidationError(expected, sql)


def validate_select(sql: str) -> None:
    validate(sql, StatementKind.SELECT)


def validate_insert(sql: str) -> None:
    validate(sql, StatementKind.INSERT)


def validate_update(sql: str) -> None:
    validate(sql, StatementKind.UPDATE)


def validate_upsert(sql: str) -> None:
    validate(sql, StatementKind.UPSERT)


def validate_delete(sql: str) -> None:
    validate(sql, StatementKind.DELETE)


def target_table(sql: str) -> str:
    """
    Best-effort table name of a statement, used for log and metric labels.
    Returns "unknown" when it cannot be determined.
    """
    kind = statement_kind(sql)
    if kind is None:
        return "unknown"
    match = _TABLE_RE[kind].search(sql)
    if not match:
        return "unknown"
    return match.group(1).strip("`")
