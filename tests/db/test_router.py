from __future__ import annotations

import logging
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from mysqldao.config import DbConfig, PoolConfig
from mysqldao.db.results import ModificationResult
from mysqldao.db.router import DbRouter
from mysqldao.db.stream import StreamState
from mysqldao.errors import (
    ConfigurationError,
    MysqlDaoError,
    QueryExecutionError,
    StatementValidationError,
)


def _result(
    rows: list[dict[str, Any]] | None = None,
    rowcount: int = 0,
    lastrowid: int = 0,
    message: Any = None,
) -> MagicMock:
    result = MagicMock()
    result.returns_rows = rows is not None
    result.mappings.return_value = list(rows or [])
    result.rowcount = rowcount
    result.lastrowid = lastrowid
    result.context.cursor._result.message = message
    return result


def _engine(result: MagicMock | None = None, error: Exception | None = None) -> MagicMock:
    """Engine double whose connect()/begin() contexts yield one shared connection."""
    engine = MagicMock(name="engine")
    conn = MagicMock(name="conn")
    conn.execution_options.return_value = conn
    if error is not None:
        conn.exec_driver_sql.side_effect = error
    else:
        conn.exec_driver_sql.return_value = result if result is not None else _result(rows=[])
    engine.connect.return_value.__enter__.return_value = conn
    engine.begin.return_value.__enter__.return_value = conn
    engine.conn = conn
    return engine


def _driver_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("MySQL server has gone away"))


class TestConstruction:
    """Tests for DbRouter construction and pool selection."""

    def test_requires_write_engine(self) -> None:
        with pytest.raises(ConfigurationError):
            DbRouter(None)  # type: ignore[arg-type]

    def test_read_engines_default_to_write_engine(self) -> None:
        write = _engine()
        router = DbRouter(write)
        assert router.read_engines == [write]

    def test_from_config_creates_one_engine_per_read_host(self, monkeypatch: pytest.MonkeyPatch) -> None:
        created: list[PoolConfig] = []

        def fake_create(config: PoolConfig) -> MagicMock:
            created.append(config)
            return _engine()

        monkeypatch.setattr("mysqldao.db.router.create_pool_engine", fake_create)
        pool = {"user": "app", "password": "pw", "database": "app", "connectionLimit": 5}
        config = DbConfig.from_mapping({
            "write": {**pool, "host": "primary"},
            "read": {**pool, "host": ["replica-1", "replica-2"]},
        })

        router = DbRouter.from_config(config)

        assert [c.host for c in created] == ["primary", "replica-1", "replica-2"]
        assert len(router.read_engines) == 2

    def test_reset_pools_rebuilds_engines(self, monkeypatch: pytest.MonkeyPatch) -> None:
        engines: list[MagicMock] = []

        def fake_create(config: PoolConfig) -> MagicMock:
            engine = _engine()
            engines.append(engine)
            return engine

        monkeypatch.setattr("mysqldao.db.router.create_pool_engine", fake_create)
        pool = {"host": "primary", "user": "app", "password": "pw", "database": "app", "connectionLimit": 5}
        router = DbRouter.from_config(DbConfig.from_mapping({"write": pool}))
        first = router.write_engine

        router.reset_pools()

        first.dispose.assert_called_once()
        assert router.write_engine is engines[-1]
        assert router.write_engine is not first

    def test_reset_pools_requires_config(self) -> None:
        with pytest.raises(MysqlDaoError):
            DbRouter(_engine()).reset_pools()


class TestSelect:
    """Tests for select_one/select_all and their *_from_master variants."""

    def test_select_one_returns_first_row(self) -> None:
        engine = _engine(_result(rows=[{"id": 1}, {"id": 2}]))
        router = DbRouter(engine)
        assert router.select_one("SELECT * FROM users") == {"id": 1}

    def test_select_one_empty_is_none(self) -> None:
        router = DbRouter(_engine(_result(rows=[])))
        assert router.select_one("SELECT * FROM users WHERE id = 0") is None

    def test_select_all_empty_is_empty_list(self) -> None:
        router = DbRouter(_engine(_result(rows=[])))
        assert router.select_all("SELECT * FROM users WHERE id = 0") == []

    def test_reads_go_to_read_pool(self) -> None:
        write = _engine()
        read = _engine(_result(rows=[{"id": 1}]))
        router = DbRouter(write, [read])

        assert router.select_all("SELECT * FROM users") == [{"id": 1}]
        read.connect.assert_called_once()
        write.connect.assert_not_called()

    def test_from_master_reads_go_to_write_pool(self) -> None:
        write = _engine(_result(rows=[{"id": 1}]))
        read = _engine()
        router = DbRouter(write, [read])

        assert router.select_one_from_master("SELECT * FROM users") == {"id": 1}
        assert router.select_all_from_master("SELECT * FROM users") == [{"id": 1}]
        read.connect.assert_not_called()

    def test_wrong_statement_kind_is_rejected_before_io(self) -> None:
        engine = _engine()
        router = DbRouter(engine)

        with pytest.raises(StatementValidationError, match="Invalid SELECT query"):
            router.select_one("DELETE FROM users")
        engine.connect.assert_not_called()
        engine.begin.assert_not_called()

    def test_driver_error_is_logged_and_wrapped(self, caplog: pytest.LogCaptureFixture) -> None:
        error = _driver_error()
        router = DbRouter(_engine(error=error))

        with caplog.at_level(logging.ERROR, logger="mysqldao.db.router"):
            with pytest.raises(QueryExecutionError) as exc_info:
                router.select_all("SELECT * FROM users")

        assert exc_info.value.__cause__ is error
        records = [r for r in caplog.records if r.name == "mysqldao.db.router"]
        assert records and records[0].sql == "SELECT * FROM users"
        assert records[0].table == "users"

    def test_uses_injected_logger(self) -> None:
        logger = MagicMock(spec=logging.Logger)
        router = DbRouter(_engine(error=_driver_error()), logger=logger)

        with pytest.raises(QueryExecutionError):
            router.select_one("SELECT 1")
        logger.error.assert_called_once()


class TestWrites:
    """Tests for insert/update/upsert/delete."""

    def test_insert_returns_insert_id(self) -> None:
        engine = _engine(_result(rowcount=1, lastrowid=42))
        router = DbRouter(engine)

        result = router.insert("INSERT INTO users (email) VALUES ('a@b.c')")

        assert result == ModificationResult(affected_rows=1, insert_id=42, changed_rows=1)
        engine.begin.assert_called_once()

    def test_writes_always_use_write_pool(self) -> None:
        write = _engine(_result(rowcount=1))
        read = _engine()
        router = DbRouter(write, [read])

        router.delete("DELETE FROM users WHERE id = 1")
        router.upsert("INSERT INTO users (id) VALUES (1) ON DUPLICATE KEY UPDATE id = id")

        assert write.begin.call_count == 2
        read.begin.assert_not_called()
        read.connect.assert_not_called()

    def test_update_reports_changed_rows(self) -> None:
        message = b"(Rows matched: 2  Changed: 1  Warnings: 0"
        router = DbRouter(_engine(_result(rowcount=1, message=message)))

        result = router.update("UPDATE users SET a = 1 WHERE last_name = 'Doe'")

        assert result.affected_rows == 2
        assert result.changed_rows == 1

    @pytest.mark.parametrize(
        "method,sql",
        [
            ("insert", "INSERT INTO t (a) VALUES (1) ON DUPLICATE KEY UPDATE a = 1"),
            ("upsert", "INSERT INTO t (a) VALUES (1)"),
            ("update", "DELETE FROM t"),
            ("delete", "SELECT * FROM t"),
        ],
    )
    def test_wrong_statement_kind_is_rejected(self, method: str, sql: str) -> None:
        engine = _engine()
        router = DbRouter(engine)

        with pytest.raises(StatementValidationError):
            getattr(router, method)(sql)
        engine.begin.assert_not_called()


class TestGenericQueries:
    """Tests for execute_generic_query() and execute_queries()."""

    def test_generic_query_returns_rows_when_available(self) -> None:
        engine = _engine(_result(rows=[{"Table": "users"}]))
        router = DbRouter(engine)
        assert router.execute_generic_query("SHOW TABLES") == [{"Table": "users"}]

    def test_generic_query_returns_modification_result(self) -> None:
        engine = _engine(_result(rowcount=0))
        router = DbRouter(engine)
        assert router.execute_generic_query("CREATE TABLE t (id INT)") == ModificationResult()

    def test_execute_queries_share_one_connection(self) -> None:
        engine = _engine(_result(rowcount=0))
        router = DbRouter(engine)
        queries = ["SET foreign_key_checks = 0", "DROP TABLE IF EXISTS t", "SET foreign_key_checks = 1"]

        results = router.execute_queries(queries)

        assert len(results) == 3
        engine.begin.assert_called_once()
        assert [c.args[0] for c in engine.conn.exec_driver_sql.call_args_list] == queries


class TestStreams:
    """Tests for stream_query() and stream_query_from_master()."""

    def test_streams_rows_with_server_side_cursor(self) -> None:
        engine = _engine(_result(rows=[{"id": 1}, {"id": 2}]))
        router = DbRouter(engine)

        stream = router.stream_query("SELECT * FROM users", buffer_size=50)

        assert list(stream) == [{"id": 1}, {"id": 2}]
        assert stream.state is StreamState.END
        engine.conn.execution_options.assert_called_once_with(stream_results=True, max_row_buffer=50)

    def test_stream_applies_transform(self) -> None:
        engine = _engine(_result(rows=[{"id": 1}]))
        router = DbRouter(engine)

        stream = router.stream_query_from_master("SELECT * FROM users", transform=lambda row: row["id"])

        assert list(stream) == [1]

    def test_stream_validates_before_io(self) -> None:
        engine = _engine()
        router = DbRouter(engine)

        with pytest.raises(StatementValidationError):
            router.stream_query("UPDATE users SET a = 1")
        engine.connect.assert_not_called()

    def test_stream_error_ends_stream_and_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        error = _driver_error()
        router = DbRouter(_engine(error=error))

        with caplog.at_level(logging.ERROR, logger="mysqldao.db.router"):
            stream = router.stream_query("SELECT * FROM users")
            rows = list(stream)

        assert rows == []
        assert stream.state is StreamState.ERROR
        assert stream.error is error
        assert any(r.name == "mysqldao.db.router" for r in caplog.records)


class TestAdministration:
    """Tests for ping() and dispose()."""

    def test_ping_checks_every_pool(self) -> None:
        write, read = _engine(), _engine()
        DbRouter(write, [read]).ping()

        write.conn.exec_driver_sql.assert_called_once_with("SELECT 1")
        read.conn.exec_driver_sql.assert_called_once_with("SELECT 1")

    def test_ping_failure_raises(self) -> None:
        router = DbRouter(_engine(), [_engine(error=_driver_error())])
        with pytest.raises(QueryExecutionError):
            router.ping()

    def test_dispose_closes_every_pool(self) -> None:
        write, read = _engine(), _engine()
        DbRouter(write, [read]).dispose()

        write.dispose.assert_called_once()
        read.dispose.assert_called_once()


def test_escape_helpers() -> None:
    assert DbRouter.escape("a'b") == "'a\\'b'"
    assert DbRouter.escape_special("NOW()") == "NOW()"
