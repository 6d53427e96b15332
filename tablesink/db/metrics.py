from ..metrics.registry import DB_WRITE_LATENCY_SECONDS, DB_WRITE_TOTAL


def observe_db_write(table: str, status: str, latency_s: float, statements: int = 1) -> None:
    """
    Record a destination batch outcome.

    Args:
        table: Destination table
        status: "success" or "error"
        latency_s: Seconds from the first statement to commit/rollback
        statements: Number of INSERT statements in the batch
    """
    DB_WRITE_TOTAL.labels(table=table, status=status).inc(statements)
    DB_WRITE_LATENCY_SECONDS.labels(table=table).observe(latency_s)
