"""
Helpers for preparing a MySQL database for integration tests.

``DatabaseSetup`` copies table definitions (and optionally data) from a
schema-source database into the database the router's write pool points at.
"""
from __future__ import annotations

import logging
from typing import Iterable

from .db.helpers import validate_identifier
from .db.router import DbRouter

logger = logging.getLogger(__name__)

_FK_CHECKS_OFF = "SET foreign_key_checks = 0"
_FK_CHECKS_ON = "SET foreign_key_checks = 1"


class DatabaseSetup:
    """
    Usage:
        setup = DatabaseSetup(router, schema_source_database="app")
        setup.replicate_tables(["users", "orders"], reset_auto_increment=True)
        setup.copy_data_for_tables(["users"])
    """

    def __init__(self, router: DbRouter, schema_source_database: str) -> None:
        self.router = router
        self.schema_source_database = validate_identifier(schema_source_database, "database")

    def get_all_tables_from_source_database(self) -> list[str]:
        return self._get_all_tables(self.schema_source_database)

    def get_all_tables_from_current_database(self) -> list[str]:
        return self._get_all_tables(None)

    def drop_tables(self, tables: Iterable[str]) -> None:
        statements = [f"DROP TABLE IF EXISTS {self._table(t)}" for t in tables]
        self._run(statements)

    def drop_all_tables(self) -> None:
        self.drop_tables(self.get_all_tables_from_current_database())

    def replicate_tables(self, tables: Iterable[str], reset_auto_increment: bool = False) -> None:
        """Recreate ``tables`` in the current database from the source database definitions."""
        tables = list(tables)
        self.drop_tables(tables)

        statements = []
        for table in tables:
            statements.append(self._create_table_sql(table))
            if reset_auto_increment:
                statements.append(f"ALTER TABLE {self._table(table)} AUTO_INCREMENT = 1")
        self._run(statements)

    def replicate_all_tables(self, reset_auto_increment: bool = False) -> None:
        self.replicate_tables(
            self.get_all_tables_from_source_database(),
            reset_auto_increment=reset_auto_increment,
        )

    def copy_data_for_tables(self, tables: Iterable[str]) -> None:
        statements = [
            f"INSERT INTO {self._table(t)} SELECT * FROM {self.schema_source_database}.{self._table(t)}"
            for t in tables
        ]
        self._run(statements)

    def copy_data_for_all_tables(self) -> None:
        self.copy_data_for_tables(self.get_all_tables_from_source_database())

    def _get_all_tables(self, database: str | None) -> list[str]:
        schema = f"'{database}'" if database else "DATABASE()"
        rows = self.router.select_all_from_master(
            "SELECT TABLE_NAME AS table_name FROM INFORMATION_SCHEMA.TABLES "
            f"WHERE TABLE_SCHEMA = {schema} ORDER BY TABLE_NAME"
        )
        return [row["table_name"] for row in rows]

    def _create_table_sql(self, table: str) -> str:
        rows = self.router.execute_generic_query(
            f"SHOW CREATE TABLE {self.schema_source_database}.{self._table(table)}"
        )
        return rows[0]["Create Table"]

    def _run(self, statements: list[str]) -> None:
        if not statements:
            return
        logger.info("Running %d setup statement(s)", len(statements))
        self.router.execute_queries([_FK_CHECKS_OFF, *statements, _FK_CHECKS_ON])

    @staticmethod
    def _table(table: str) -> str:
        return validate_identifier(table, "table")
