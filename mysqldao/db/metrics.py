import logging

from ..metrics.registry import (
    DB_QUERY_LATENCY_SECONDS,
    DB_QUERY_TOTAL,
    DB_STREAM_ROWS_TOTAL,
)

logger = logging.getLogger(__name__)


def observe_query(kind: str, pool: str, status: str, latency_s: float) -> None:
    """
    Record one dispatched statement.

    Metric failures are logged and never raised, so they cannot mask the
    outcome of the query itself.
    """
    try:
        DB_QUERY_TOTAL.labels(kind=kind, pool=pool, status=status).inc()
        DB_QUERY_LATENCY_SECONDS.labels(kind=kind, pool=pool).observe(latency_s)
    except Exception:
        logger.warning("Failed to record query metrics", exc_info=True)


def observe_stream_row(pool: str) -> None:
    try:
        DB_STREAM_ROWS_TOTAL.labels(pool=pool).inc()
    except Exception:
        logger.warning("Failed to record stream metrics", exc_info=True)
