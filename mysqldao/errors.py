class MysqlDaoError(Exception):
    """Base exception for mysqldao errors."""


class ConfigurationError(MysqlDaoError, ValueError):
    """Malformed or missing connection pool configuration."""


class QueryValidationError(MysqlDaoError, ValueError):
    """A filter, options or write argument cannot be turned into SQL."""


class StatementValidationError(QueryValidationError):
    """SQL text does not match the statement kind the call expects."""

    def __init__(self, expected, sql: str | None = None) -> None:
        self.expected = expected
        self.sql = sql
        super().__init__(f"Invalid {expected.value} query")


class QueryExecutionError(MysqlDaoError):
    """The driver failed to execute a statement."""


class DaoError(MysqlDaoError):
    """A DAO operation failed; the driver error is chained as __cause__."""
