from .config import DbConfig, PoolConfig
from .db.builder import QueryBuilder, QueryOptions
from .db.dao import MysqlDao, PagedResults
from .db.escaping import Raw
from .db.results import ModificationResult
from .db.router import DbRouter
from .db.stream import RowStream

__all__ = [
    "DbConfig",
    "PoolConfig",
    "DbRouter",
    "MysqlDao",
    "PagedResults",
    "QueryBuilder",
    "QueryOptions",
    "ModificationResult",
    "Raw",
    "RowStream",
]
