from prometheus_client import Counter, Histogram

DB_QUERY_TOTAL = Counter(
    "mysqldao_db_query_total",
    "Statements dispatched to a connection pool",
    ["kind", "pool", "status"],
)

DB_QUERY_LATENCY_SECONDS = Histogram(
    "mysqldao_db_query_latency_seconds",
    "Statement execution latency in seconds",
    ["kind", "pool"],
)

DB_STREAM_ROWS_TOTAL = Counter(
    "mysqldao_db_stream_rows_total",
    "Rows delivered by streamed queries",
    ["pool"],
)
