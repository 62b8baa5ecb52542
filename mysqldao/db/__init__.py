from .builder import QueryBuilder, QueryOptions, Serializable
from .dao import MysqlDao, PagedResults
from .escaping import Raw, escape, escape_special
from .query import StatementKind, classify
from .results import ModificationResult
from .router import DbRouter
from .stream import RowStream, StreamState

__all__ = [
    "QueryBuilder",
    "QueryOptions",
    "Serializable",
    "MysqlDao",
    "PagedResults",
    "Raw",
    "escape",
    "escape_special",
    "StatementKind",
    "classify",
    "ModificationResult",
    "DbRouter",
    "RowStream",
    "StreamState",
]
