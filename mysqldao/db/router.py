from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Iterator, Sequence

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import DbConfig, PoolConfig
from ..errors import ConfigurationError, MysqlDaoError, QueryExecutionError, StatementValidationError
from . import escaping
from .metrics import observe_query, observe_stream_row
from .query import StatementKind, statement_kind, target_table, validate
from .results import ModificationResult, normalize_modification, normalize_row, normalize_select
from .stream import RowStream

WRITE_POOL = "write"
READ_POOL = "read"


def create_pool_engine(config: PoolConfig) -> Engine:
    """SQLAlchemy engine (and its connection pool) for a single-host config."""
    return create_engine(config.engine_url(), **config.engine_kwargs())


class DbRouter:
    """
    Routes statements to the write (primary) pool or a read (replica) pool.

    Reads go to a randomly chosen read pool, or to the write pool when no
    read pool is configured; ``*_from_master`` reads and every write go to
    the write pool. Each call checks the statement kind before dispatch.

    Construct one router per process and share it; engines are long-lived
    and safe to use from several threads.

    Usage:
        router = DbRouter.from_config(DbConfig.from_env())
        row = router.select_one("SELECT * FROM users WHERE id = 1")
        result = router.update("UPDATE users SET name = 'x' WHERE id = 1")
        router.dispose()
    """

    def __init__(
        self,
        write_engine: Engine,
        read_engines: Sequence[Engine] | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        if write_engine is None:
            raise ConfigurationError("a write engine is required")
        self._write_engine = write_engine
        self._read_engines = list(read_engines) if read_engines else []
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._config: DbConfig | None = None

    @classmethod
    def from_config(cls, config: DbConfig, logger: logging.Logger | None = None) -> "DbRouter":
        write_engine, read_engines = cls._create_engines(config)
        router = cls(write_engine, read_engines, logger=logger)
        router._config = config
        return router

    @staticmethod
    def _create_engines(config: DbConfig) -> tuple[Engine, list[Engine]]:
        write_engine = create_pool_engine(config.write)
        read_engines = []
        if config.read is not None:
            read_engines = [create_pool_engine(c) for c in config.read.expand_hosts()]
        return write_engine, read_engines

    @property
    def write_engine(self) -> Engine:
        return self._write_engine

    @property
    def read_engines(self) -> list[Engine]:
        """Configured read engines; the write engine when none are configured."""
        return list(self._read_engines) or [self._write_engine]

    def _read_engine(self) -> Engine:
        if not self._read_engines:
            return self._write_engine
        return random.choice(self._read_engines)

    def select_one(self, sql: str) -> dict[str, Any] | None:
        return self._select(self._read_engine(), READ_POOL, sql, want_one=True)

    def select_one_from_master(self, sql: str) -> dict[str, Any] | None:
        return self._select(self._write_engine, WRITE_POOL, sql, want_one=True)

    def select_all(self, sql: str) -> list[dict[str, Any]]:
        return self._select(self._read_engine(), READ_POOL, sql, want_one=False)

    def select_all_from_master(self, sql: str) -> list[dict[str, Any]]:
        return self._select(self._write_engine, WRITE_POOL, sql, want_one=False)

    def _select(self, engine: Engine, pool: str, sql: str, want_one: bool) -> Any:
        self._validate(sql, StatementKind.SELECT)

        def run(conn: Connection) -> Any:
            result = conn.exec_driver_sql(sql)
            return normalize_select(result.mappings(), want_one)

        return self._dispatch(engine, pool, StatementKind.SELECT.value, sql, run, write=False)

    def insert(self, sql: str) -> ModificationResult:
        return self._modify(StatementKind.INSERT, sql)

    def update(self, sql: str) -> ModificationResult:
        return self._modify(StatementKind.UPDATE, sql)

    def upsert(self, sql: str) -> ModificationResult:
        return self._modify(StatementKind.UPSERT, sql)

    def delete(self, sql: str) -> ModificationResult:
        return self._modify(StatementKind.DELETE, sql)

    def _modify(self, kind: StatementKind, sql: str) -> ModificationResult:
        self._validate(sql, kind)

        def run(conn: Connection) -> ModificationResult:
            return _modification_result(conn.exec_driver_sql(sql))

        return self._dispatch(self._write_engine, WRITE_POOL, kind.value, sql, run, write=True)

    def execute_generic_query(self, sql: str) -> list[dict[str, Any]] | ModificationResult:
        """
        Execute any statement against the write pool without checking its
        kind (DDL, SET, SHOW ...). Returns rows for statements that produce
        them, a ModificationResult otherwise.
        """
        return self._dispatch(
            self._write_engine,
            WRITE_POOL,
            _kind_label(sql),
            sql,
            lambda conn: _generic_result(conn, sql),
            write=True,
        )

    def execute_queries(self, queries: Sequence[str]) -> list[list[dict[str, Any]] | ModificationResult]:
        """
        Execute several unchecked statements in order on one connection,
        so session state (e.g. ``SET foreign_key_checks``) carries over.
        """
        sql = ";\n".join(queries)

        def run(conn: Connection) -> list[Any]:
            return [_generic_result(conn, query) for query in queries]

        return self._dispatch(self._write_engine, WRITE_POOL, "generic", sql, run, write=True)

    def stream_query(
        self,
        sql: str,
        transform: Callable[[dict[str, Any]], Any] | None = None,
        buffer_size: int | None = None,
    ) -> RowStream:
        return self._stream(self._read_engine(), READ_POOL, sql, transform, buffer_size)

    def stream_query_from_master(
        self,
        sql: str,
        transform: Callable[[dict[str, Any]], Any] | None = None,
        buffer_size: int | None = None,
    ) -> RowStream:
        return self._stream(self._write_engine, WRITE_POOL, sql, transform, buffer_size)

    def _stream(
        self,
        engine: Engine,
        pool: str,
        sql: str,
        transform: Callable[[dict[str, Any]], Any] | None,
        buffer_size: int | None,
    ) -> RowStream:
        self._validate(sql, StatementKind.SELECT)
        self._logger.debug("Executing SQL: %s", sql, extra={"sql": sql})

        stream = RowStream(
            self._stream_rows(engine, pool, sql, buffer_size),
            transform=transform,
            on_row=lambda: observe_stream_row(pool),
        )
        stream.on_error(lambda exc: self._log_error(exc, sql))
        return stream

    def _stream_rows(
        self,
        engine: Engine,
        pool: str,
        sql: str,
        buffer_size: int | None,
    ) -> Iterator[dict[str, Any]]:
        start_time = time.monotonic()
        status = "success"
        options: dict[str, Any] = {"stream_results": True}
        if buffer_size:
            options["max_row_buffer"] = buffer_size
        try:
            with engine.connect() as conn:
                result = conn.execution_options(**options).exec_driver_sql(sql)
                try:
                    for row in result.mappings():
                        yield normalize_row(row)
                finally:
                    result.close()
        except Exception:
            status = "error"
            raise
        finally:
            observe_query(StatementKind.SELECT.value, pool, status, time.monotonic() - start_time)

    def ping(self) -> None:
        """Check every pool with ``SELECT 1``; raises QueryExecutionError on the first failure."""
        engines = [(WRITE_POOL, self._write_engine)] + [(READ_POOL, e) for e in self._read_engines]
        for pool, engine in engines:
            self._dispatch(
                engine, pool, "ping", "SELECT 1", lambda conn: conn.exec_driver_sql("SELECT 1"), write=False
            )

    def dispose(self) -> None:
        """Close every pooled connection."""
        for engine in [self._write_engine] + self._read_engines:
            engine.dispose()

    def reset_pools(self) -> None:
        """Dispose all pools and rebuild them from the configuration."""
        if self._config is None:
            raise MysqlDaoError("reset_pools() requires a router created with DbRouter.from_config()")
        self.dispose()
        self._write_engine, self._read_engines = self._create_engines(self._config)

    @staticmethod
    def escape(value: Any) -> str:
        return escaping.escape(value)

    @staticmethod
    def escape_special(value: Any) -> str:
        return escaping.escape_special(value)

    def _validate(self, sql: str, kind: StatementKind) -> None:
        try:
            validate(sql, kind)
        except StatementValidationError as exc:
            self._log_error(exc, sql)
            raise

    def _dispatch(
        self,
        engine: Engine,
        pool: str,
        kind: str,
        sql: str,
        run: Callable[..., Any],
        write: bool,
    ) -> Any:
        self._logger.debug("Executing SQL: %s", sql, extra={"sql": sql})
        start_time = time.monotonic()
        status = "success"
        try:
            if write:
                with engine.begin() as conn:
                    return run(conn)
            with engine.connect() as conn:
                return run(conn)
        except SQLAlchemyError as exc:
            status = "error"
            self._log_error(exc, sql)
            raise QueryExecutionError("Error executing SQL") from exc
        finally:
            observe_query(kind, pool, status, time.monotonic() - start_time)

    def _log_error(self, exc: BaseException, sql: str) -> None:
        self._logger.error(
            "Error executing SQL: %s",
            sql,
            extra={"sql": sql, "table": target_table(sql)},
            exc_info=exc,
        )


def _kind_label(sql: str) -> str:
    kind = statement_kind(sql)
    return kind.value if kind is not None else "generic"


def _generic_result(conn: Connection, sql: str) -> list[dict[str, Any]] | ModificationResult:
    result = conn.exec_driver_sql(sql)
    if result.returns_rows:
        return normalize_select(result.mappings(), want_one=False)
    return _modification_result(result)


def _modification_result(result: CursorResult) -> ModificationResult:
    return normalize_modification(result, info=_server_info(result))


def _server_info(result: CursorResult) -> Any:
    """Info message of the last OK packet (``Rows matched: ...``), if the driver kept it."""
    cursor = getattr(result.context, "cursor", None)
    driver_result = getattr(cursor, "_result", None)
    return getattr(driver_result, "message", None)
