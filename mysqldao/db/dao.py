from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from ..errors import DaoError, QueryExecutionError
from . import escaping
from .builder import QueryBuilder
from .helpers import to_camel_case
from .router import DbRouter
from .stream import RowStream

T = TypeVar("T")

RowFactory = Callable[[dict[str, Any]], T]


@dataclass
class PagedResults(Generic[T]):
    """One page of results plus the number of rows matching the filter."""
    results: list[T] = field(default_factory=list)
    count: int = 0


class MysqlDao(Generic[T]):
    """
    Per-table data access object.

    Builds SQL with a QueryBuilder, dispatches it through a DbRouter and
    maps every returned row through ``row_factory``. Subclasses name their
    table:

        class UserDao(MysqlDao[User]):
            table_name = "users"

        users = UserDao(router, User.from_db_row)
        user = users.get_one({"email": "jane@example.com"})
        page = users.get_all_and_count({"lastName": "Doe"}, {"limit": 10, "offset": 20})

    Operations come in ``*_from_master`` variants (read from the write pool,
    e.g. right after a write) and ``*_from_sql`` variants that take
    hand-written SQL. ``*_raw`` variants skip ``row_factory`` and return
    plain dicts.

    Driver failures are logged and re-raised as DaoError. Validation errors
    (bad filters, options or statement kinds) are raised unchanged before
    any I/O. Exceptions from ``row_factory`` are not wrapped.
    """

    table_name: str | None = None

    def __init__(
        self,
        router: DbRouter,
        row_factory: RowFactory,
        *,
        table_name: str | None = None,
        logger: logging.Logger | None = None,
        allow_passthrough_keywords: bool = False,
    ) -> None:
        if table_name is not None:
            self.table_name = table_name
        if not self.table_name:
            raise NotImplementedError(
                f"{type(self).__name__} must set table_name to the actual table"
            )
        self._router = router
        self._row_factory = row_factory
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        escape = escaping.escape_special if allow_passthrough_keywords else escaping.escape
        self._query_builder = QueryBuilder(self.table_name, escape=escape)

    @property
    def router(self) -> DbRouter:
        return self._router

    @property
    def query_builder(self) -> QueryBuilder:
        return self._query_builder

    def create(self, create_args: Any, ignore_on_duplicate_key: bool = False) -> int:
        """
        Insert one row and return its insert id.

        With ``ignore_on_duplicate_key`` a duplicate key is not an error;
        the returned id is then whatever the server reports (0 when nothing
        was inserted).
        """
        sql = self._query_builder.insert(create_args, ignore_on_duplicate_key=ignore_on_duplicate_key)
        if ignore_on_duplicate_key:
            return self._execute(self._router.upsert, sql, "create").insert_id
        return self.create_from_sql(sql)

    def create_from_sql(self, sql: str) -> int:
        return self._execute(self._router.insert, sql, "create_from_sql").insert_id

    def create_bulk(self, create_args_list: Sequence[Any], ignore_on_duplicate_key: bool = False) -> int:
        """Insert several rows; returns the number of affected rows."""
        sql = self._query_builder.insert_bulk(
            create_args_list, ignore_on_duplicate_key=ignore_on_duplicate_key
        )
        if ignore_on_duplicate_key:
            return self._execute(self._router.upsert, sql, "create_bulk").affected_rows
        return self.create_bulk_from_sql(sql)

    def create_bulk_from_sql(self, sql: str) -> int:
        return self._execute(self._router.insert, sql, "create_bulk_from_sql").affected_rows

    def upsert(self, insert_args: Any, on_duplicate: Any) -> int:
        """
        INSERT ... ON DUPLICATE KEY UPDATE; returns affected rows
        (1 inserted, 2 updated, 0 unchanged).
        """
        sql = self._query_builder.upsert(insert_args, on_duplicate)
        return self.upsert_from_sql(sql)

    def upsert_from_sql(self, sql: str) -> int:
        return self._execute(self._router.upsert, sql, "upsert_from_sql").affected_rows

    def upsert_bulk(self, insert_args_list: Sequence[Any], on_duplicate: Any) -> int:
        """
        ``on_duplicate`` is a mapping of column -> value, or a list of column
        names updated with the values that would have been inserted.
        """
        sql = self._query_builder.upsert_bulk(insert_args_list, on_duplicate)
        return self.upsert_bulk_from_sql(sql)

    def upsert_bulk_from_sql(self, sql: str) -> int:
        return self._execute(self._router.upsert, sql, "upsert_bulk_from_sql").affected_rows

    def get_one_by_id(self, id: Any) -> T | None:
        return self.get_one({"id": id})

    def get_one_by_id_from_master(self, id: Any) -> T | None:
        return self.get_one_from_master({"id": id})

    def get_one(self, filter: Any = None, options: Any = None) -> T | None:
        sql = self._query_builder.select_one(filter, options)
        return self._get_one_from_sql(sql, "get_one")

    def get_one_from_master(self, filter: Any = None, options: Any = None) -> T | None:
        sql = self._query_builder.select_one(filter, options)
        return self._get_one_from_sql(sql, "get_one_from_master", from_master=True)

    def get_one_from_sql(self, sql: str) -> T | None:
        return self._get_one_from_sql(sql, "get_one_from_sql")

    def get_one_from_sql_raw(self, sql: str) -> dict[str, Any] | None:
        return self._get_one_from_sql(sql, "get_one_from_sql_raw", raw=True)

    def get_one_from_sql_from_master(self, sql: str) -> T | None:
        return self._get_one_from_sql(sql, "get_one_from_sql_from_master", from_master=True)

    def get_one_from_sql_from_master_raw(self, sql: str) -> dict[str, Any] | None:
        return self._get_one_from_sql(
            sql, "get_one_from_sql_from_master_raw", raw=True, from_master=True
        )

    def _get_one_from_sql(
        self,
        sql: str,
        operation: str,
        raw: bool = False,
        from_master: bool = False,
    ) -> Any:
        select = self._router.select_one_from_master if from_master else self._router.select_one
        row = self._execute(select, sql, operation)
        if row is None or raw:
            return row
        return self._row_factory(row)

    def get_all(self, filter: Any = None, options: Any = None) -> list[T]:
        sql = self._query_builder.select(filter, options)
        return self._get_all_from_sql(sql, "get_all")

    def get_all_from_master(self, filter: Any = None, options: Any = None) -> list[T]:
        sql = self._query_builder.select(filter, options)
        return self._get_all_from_sql(sql, "get_all_from_master", from_master=True)

    def get_all_from_sql(self, sql: str) -> list[T]:
        return self._get_all_from_sql(sql, "get_all_from_sql")

    def get_all_from_sql_raw(self, sql: str) -> list[dict[str, Any]]:
        return self._get_all_from_sql(sql, "get_all_from_sql_raw", raw=True)

    def get_all_from_sql_from_master(self, sql: str) -> list[T]:
        return self._get_all_from_sql(sql, "get_all_from_sql_from_master", from_master=True)

    def get_all_from_sql_from_master_raw(self, sql: str) -> list[dict[str, Any]]:
        return self._get_all_from_sql(
            sql, "get_all_from_sql_from_master_raw", raw=True, from_master=True
        )

    def _get_all_from_sql(
        self,
        sql: str,
        operation: str,
        raw: bool = False,
        from_master: bool = False,
    ) -> list[Any]:
        select = self._router.select_all_from_master if from_master else self._router.select_all
        rows = self._execute(select, sql, operation)
        if raw:
            return rows
        return [self._row_factory(row) for row in rows]

    def get_count(self, filter: Any = None) -> int:
        return self._get_count_from_sql(self._query_builder.count(filter), "get_count")

    def get_count_from_master(self, filter: Any = None) -> int:
        sql = self._query_builder.count(filter)
        return self._get_count_from_sql(sql, "get_count_from_master", from_master=True)

    def get_count_from_sql(self, sql: str) -> int:
        """``sql`` must select a single row with a ``count`` column."""
        return self._get_count_from_sql(sql, "get_count_from_sql")

    def _get_count_from_sql(self, sql: str, operation: str, from_master: bool = False) -> int:
        row = self._get_one_from_sql(sql, operation, raw=True, from_master=from_master)
        if not row:
            return 0
        return int(row["count"])

    def get_all_and_count(self, filter: Any = None, options: Any = None) -> PagedResults[T]:
        """
        One page of results plus the total number of rows matching
        ``filter`` (sort, limit and offset do not affect the count).
        """
        return self._get_all_and_count(filter, options, from_master=False)

    def get_all_and_count_from_master(self, filter: Any = None, options: Any = None) -> PagedResults[T]:
        return self._get_all_and_count(filter, options, from_master=True)

    def _get_all_and_count(self, filter: Any, options: Any, from_master: bool) -> PagedResults[T]:
        sql = self._query_builder.select(filter, options)
        count_sql = self._query_builder.count(filter, options)
        results = self._get_all_from_sql(sql, "get_all_and_count", from_master=from_master)
        count = self._get_count_from_sql(count_sql, "get_all_and_count", from_master=from_master)
        return PagedResults(results=results, count=count)

    def stream(self, filter: Any = None, options: Any = None, buffer_size: int | None = None) -> RowStream:
        """Stream mapped objects for ``filter``; same rows and order as get_all()."""
        sql = self._query_builder.select(filter, options)
        return self._stream_from_sql(sql, buffer_size=buffer_size)

    def stream_from_master(
        self,
        filter: Any = None,
        options: Any = None,
        buffer_size: int | None = None,
    ) -> RowStream:
        sql = self._query_builder.select(filter, options)
        return self._stream_from_sql(sql, from_master=True, buffer_size=buffer_size)

    def stream_from_sql(self, sql: str, buffer_size: int | None = None) -> RowStream:
        return self._stream_from_sql(sql, buffer_size=buffer_size)

    def stream_from_sql_raw(self, sql: str, buffer_size: int | None = None) -> RowStream:
        return self._stream_from_sql(sql, raw=True, buffer_size=buffer_size)

    def stream_from_sql_from_master(self, sql: str, buffer_size: int | None = None) -> RowStream:
        return self._stream_from_sql(sql, from_master=True, buffer_size=buffer_size)

    def stream_from_sql_from_master_raw(self, sql: str, buffer_size: int | None = None) -> RowStream:
        return self._stream_from_sql(sql, raw=True, from_master=True, buffer_size=buffer_size)

    def _stream_from_sql(
        self,
        sql: str,
        raw: bool = False,
        from_master: bool = False,
        buffer_size: int | None = None,
    ) -> RowStream:
        stream_query = self._router.stream_query_from_master if from_master else self._router.stream_query
        stream = stream_query(sql, transform=None if raw else self._row_factory, buffer_size=buffer_size)
        stream.on_error(lambda exc: self._log_failure(exc, sql))
        return stream

    def update_by_id(self, id: Any, update_args: Any) -> int:
        """Returns the number of changed rows (0 or 1)."""
        return self.update_one({"id": id}, update_args)

    def update_one(self, filter: Any, update_args: Any) -> int:
        """Returns the number of changed rows (0 or 1)."""
        sql = self._query_builder.update_one(filter, update_args)
        return self.update_from_sql(sql)

    def update_multiple(self, filter: Any, update_args: Any) -> int:
        sql = self._query_builder.update(filter, update_args)
        return self.update_from_sql(sql)

    def update_from_sql(self, sql: str) -> int:
        return self._execute(self._router.update, sql, "update_from_sql").changed_rows

    def delete_by_id(self, id: Any) -> int:
        """Returns the number of deleted rows (0 or 1)."""
        return self.delete_one({"id": id})

    def delete_one(self, filter: Any) -> int:
        sql = self._query_builder.delete_one(filter)
        return self.delete_from_sql(sql)

    def delete_multiple(self, filter: Any) -> int:
        sql = self._query_builder.delete(filter)
        return self.delete_from_sql(sql)

    def delete_from_sql(self, sql: str) -> int:
        return self._execute(self._router.delete, sql, "delete_from_sql").affected_rows

    def join(
        self,
        objects: Any,
        lookup_key: str,
        *,
        join_key: str = "id",
        results_key: str | None = None,
    ) -> Any:
        """
        Attach rows of this table to ``objects``.

        Selects every row whose ``lookup_key`` is one of the objects'
        ``join_key`` values (one ``IN`` query) and stores the matching mapped
        rows on each object under ``results_key`` (default: the camelCase
        table name). Accepts one object or a list and returns the same
        shape. Objects may be dicts or plain objects.
        """
        if not objects:
            return objects

        single = not isinstance(objects, list)
        items = [objects] if single else objects
        results_key = results_key or to_camel_case(self.table_name)

        join_values = [_get_value(item, join_key) for item in items]
        remaining = self.get_all({lookup_key: join_values})

        for item in items:
            item_value = _get_value(item, join_key)
            matches = [vo for vo in remaining if _get_value(vo, lookup_key) == item_value]
            remaining = [vo for vo in remaining if _get_value(vo, lookup_key) != item_value]
            _set_value(item, results_key, matches)

        return items[0] if single else items

    def batch_join(
        self,
        objects: Any,
        lookup_key: str,
        *,
        join_key: str = "id",
        results_key: str | None = None,
        max_batch_size: int = 100,
    ) -> Any:
        """join() in batches of at most ``max_batch_size`` objects per query."""
        if not objects:
            return objects
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

        single = not isinstance(objects, list)
        items = [objects] if single else objects
        joined: list[Any] = []
        for start in range(0, len(items), max_batch_size):
            batch = items[start:start + max_batch_size]
            joined.extend(self.join(batch, lookup_key, join_key=join_key, results_key=results_key))
        return joined[0] if single else joined

    @staticmethod
    def escape(value: Any) -> str:
        return escaping.escape(value)

    @staticmethod
    def escape_special(value: Any) -> str:
        return escaping.escape_special(value)

    def _execute(self, execute: Callable[[str], Any], sql: str, operation: str) -> Any:
        try:
            return execute(sql)
        except QueryExecutionError as exc:
            self._log_failure(exc, sql)
            raise DaoError(f"MysqlDao.{operation}() for {self.table_name} failed") from exc

    def _log_failure(self, exc: BaseException, sql: str) -> None:
        self._logger.error(
            "MysqlDao query failed for %s: %s",
            self.table_name,
            sql,
            extra={"sql": sql, "table": self.table_name},
            exc_info=exc,
        )


def _get_value(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _set_value(obj: Any, key: str, value: Any) -> None:
    if isinstance(obj, MutableMapping):
        obj[key] = value
    else:
        setattr(obj, key, value)
