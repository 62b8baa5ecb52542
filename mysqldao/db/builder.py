from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import QueryValidationError
from .escaping import SEQUENCE_TYPES, Raw, escape, is_passthrough, is_raw
from .helpers import normalize_column, quoted_column, validate_identifier
from .operators import is_operator_object, render_operator_object

Escape = Callable[[Any], str]


@runtime_checkable
class Serializable(Protocol):
    """Domain objects that can be used wherever a plain mapping is expected."""

    def to_plain_mapping(self) -> Mapping[str, Any]:
        ...


def to_mapping(obj: Any, what: str = "argument") -> Mapping[str, Any]:
    """Plain mapping view of a mapping, a Serializable or a dataclass instance."""
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return obj
    if isinstance(obj, Serializable):
        mapping = obj.to_plain_mapping()
        if not isinstance(mapping, Mapping):
            raise QueryValidationError(
                f"{type(obj).__name__}.to_plain_mapping() must return a mapping"
            )
        return mapping
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise QueryValidationError(
        f"{what} must be a mapping or expose to_plain_mapping(), got {type(obj).__name__}"
    )


def _check_non_negative_int(name: str, value: Any) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise QueryValidationError(f"{name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class QueryOptions:
    """
    Sort and pagination for SELECT statements.

    ``sort`` maps column names to "asc"/"desc" (case-insensitive, ascending
    unless "desc"); key order is the ORDER BY order. ``offset`` is only
    valid together with ``limit``.
    """
    sort: Mapping[str, str] | None = None
    limit: int | None = None
    offset: int | None = None

    def __post_init__(self) -> None:
        _check_non_negative_int("limit", self.limit)
        _check_non_negative_int("offset", self.offset)
        if self.offset is not None and self.limit is None:
            raise QueryValidationError("Missing limit in options, must include with offset option.")
        if self.sort is not None and not isinstance(self.sort, Mapping):
            raise QueryValidationError(f"sort must be a mapping, got {type(self.sort).__name__}")

    @classmethod
    def coerce(cls, options: "QueryOptions | Mapping[str, Any] | None") -> "QueryOptions":
        if options is None:
            return cls()
        if isinstance(options, QueryOptions):
            return options
        if not isinstance(options, Mapping):
            raise QueryValidationError(
                f"options must be a mapping or QueryOptions, got {type(options).__name__}"
            )
        unknown = set(options) - {"sort", "limit", "offset"}
        if unknown:
            raise QueryValidationError(f"Unknown option(s): {', '.join(sorted(unknown))}")
        return cls(
            sort=options.get("sort"),
            limit=options.get("limit"),
            offset=options.get("offset"),
        )


class QueryBuilder:
    """
    Builds MySQL statement text for a single table.

    Every method is pure: it only renders text, values are escaped with the
    configured escape function (``escape`` by default, ``escape_special``
    to let NOW()/CURRENT_TIMESTAMP through).

    Usage:
        builder = QueryBuilder("users")
        builder.select({"lastName": "Doe"}, {"sort": {"email": "desc"}, "limit": 2})
        # SELECT * FROM users WHERE (last_name = 'Doe') ORDER BY email DESC LIMIT 2
    """

    def __init__(self, table_name: str, *, escape: Escape = escape) -> None:
        self.table_name = validate_identifier(table_name, "table")
        self._escape = escape

    def select(self, filter: Any = None, options: Any = None) -> str:
        opts = QueryOptions.coerce(options)
        sql = f"SELECT * FROM {self.table_name}{self._where(filter)}"
        return sql + self._order_by(opts.sort) + self._limit(opts.limit, opts.offset)

    def select_one(self, filter: Any = None, options: Any = None) -> str:
        opts = QueryOptions.coerce(options)
        sql = f"SELECT * FROM {self.table_name}{self._where(filter)}"
        return sql + self._order_by(opts.sort) + " LIMIT 1"

    def count(self, filter: Any = None, options: Any = None) -> str:
        # options are validated but sort/limit/offset do not apply to a count
        QueryOptions.coerce(options)
        return f"SELECT COUNT(*) AS count FROM {self.table_name}{self._where(filter)}"

    def insert(self, args: Any, ignore_on_duplicate_key: bool = False) -> str:
        return self.insert_bulk([args], ignore_on_duplicate_key=ignore_on_duplicate_key)

    def insert_bulk(self, rows: Iterable[Any], ignore_on_duplicate_key: bool = False) -> str:
        columns, values = self._rows(rows)
        sql = self._insert_sql(columns, values)
        if ignore_on_duplicate_key:
            # no-op update on the first column turns a duplicate into a 0-row change
            first = columns[0]
            sql += f" ON DUPLICATE KEY UPDATE {first} = {first}"
        return sql

    def upsert(self, insert_args: Any, on_duplicate: Any) -> str:
        return self.upsert_bulk([insert_args], on_duplicate)

    def upsert_bulk(self, rows: Iterable[Any], on_duplicate: Any) -> str:
        """
        INSERT ... ON DUPLICATE KEY UPDATE.

        ``on_duplicate`` is either a mapping of column -> new value
        (``col = value``) or a sequence of column names that take the value
        that would have been inserted (``col = VALUES(col)``).
        """
        columns, values = self._rows(rows)
        assignments = self._on_duplicate_assignments(on_duplicate)
        return f"{self._insert_sql(columns, values)} ON DUPLICATE KEY UPDATE {assignments}"

    def update(self, filter: Any, update_args: Any) -> str:
        values = self._clean_and_map_values(to_mapping(update_args, "update arguments"))
        if not values:
            raise QueryValidationError("update arguments must set at least one column")
        set_sql = ", ".join(f"{column} = {value}" for column, value in values.items())
        return f"UPDATE {self.table_name} SET {set_sql}{self._where(filter)}"

    def update_one(self, filter: Any, update_args: Any) -> str:
        return self.update(filter, update_args) + " LIMIT 1"

    def delete(self, filter: Any) -> str:
        return f"DELETE FROM {self.table_name}{self._where(filter)}"

    def delete_one(self, filter: Any) -> str:
        return self.delete(filter) + " LIMIT 1"

    def _clean_and_map_values(self, obj: Mapping[str, Any]) -> dict[str, str]:
        """Escaped values keyed by storage column name."""
        clean: dict[str, str] = {}
        for prop, value in obj.items():
            if is_operator_object(value) and not is_raw(value):
                raise QueryValidationError(
                    f"Operator objects are only valid in filters, got one for {prop!r}"
                )
            if isinstance(value, SEQUENCE_TYPES):
                raise QueryValidationError(
                    f"Sequences are only valid in filters, got one for {prop!r}"
                )
            clean[normalize_column(prop)] = self._escape(value)
        return clean

    def _rows(self, rows: Iterable[Any]) -> tuple[list[str], list[list[str]]]:
        if isinstance(rows, Mapping) or not isinstance(rows, Iterable):
            raise QueryValidationError("rows must be a list of mappings")
        cleaned = [self._clean_and_map_values(to_mapping(row, "row")) for row in rows]
        if not cleaned:
            raise QueryValidationError("at least one row is required")

        columns = list(cleaned[0])
        if not columns:
            raise QueryValidationError("rows must set at least one column")
        expected = set(columns)
        for index, row in enumerate(cleaned[1:], start=1):
            if set(row) != expected:
                missing = sorted(expected - set(row))
                extra = sorted(set(row) - expected)
                raise QueryValidationError(
                    f"row {index} does not match the columns of the first row "
                    f"(missing: {missing}, unexpected: {extra})"
                )
        return columns, [[row[column] for column in columns] for row in cleaned]

    def _insert_sql(self, columns: Sequence[str], values: Sequence[Sequence[str]]) -> str:
        rows_sql = ", ".join(f"({', '.join(row)})" for row in values)
        return f"INSERT INTO {self.table_name} ({', '.join(columns)}) VALUES {rows_sql}"

    def _on_duplicate_assignments(self, on_duplicate: Any) -> str:
        if isinstance(on_duplicate, (str, bytes)):
            raise QueryValidationError("on_duplicate must be a mapping or a list of column names")
        if isinstance(on_duplicate, SEQUENCE_TYPES):
            if not on_duplicate:
                raise QueryValidationError("on_duplicate must name at least one column")
            columns = [normalize_column(name) for name in on_duplicate]
            return ", ".join(f"{column} = VALUES({column})" for column in columns)

        values = self._clean_and_map_values(to_mapping(on_duplicate, "on_duplicate"))
        if not values:
            raise QueryValidationError("on_duplicate must set at least one column")
        return ", ".join(f"{column} = {value}" for column, value in values.items())

    def _where(self, filter: Any) -> str:
        clauses = [
            f"({self._predicate(prop, value)})"
            for prop, value in to_mapping(filter, "filter").items()
        ]
        if not clauses:
            return ""
        return " WHERE " + " AND ".join(clauses)

    def _predicate(self, prop: str, value: Any) -> str:
        if isinstance(value, Raw):
            return f"{normalize_column(prop)} = {value.sql}"
        if is_operator_object(value):
            return render_operator_object(quoted_column(prop), value, self._escape)

        column = normalize_column(prop)
        if value is None:
            return f"{column} IS NULL"
        if isinstance(value, SEQUENCE_TYPES):
            return render_operator_object(column, {"in": value}, self._escape)
        if is_passthrough(value) and value.lower() in ("is null", "is not null"):
            rendered = self._escape(value)
            if rendered == value:
                return f"{column} {value.upper()}"
        return f"{column} = {self._escape(value)}"

    def _order_by(self, sort: Mapping[str, str] | None) -> str:
        if not sort:
            return ""
        terms = []
        for prop, direction in sort.items():
            desc = isinstance(direction, str) and direction.strip().lower() == "desc"
            terms.append(f"{normalize_column(prop)} {'DESC' if desc else 'ASC'}")
        return " ORDER BY " + ", ".join(terms)

    @staticmethod
    def _limit(limit: int | None, offset: int | None) -> str:
        if limit is None:
            return ""
        sql = f" LIMIT {limit}"
        if offset is not None:
            sql += f" OFFSET {offset}"
        return sql
