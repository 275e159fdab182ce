"""Database query execution utilities.

Times and logs store operations so repository methods do not repeat the
start/completed/failed logging boilerplate.
"""

import time
from contextlib import contextmanager
from typing import Any, Generator

import logfire


@contextmanager
def timed_query(
    operation_name: str,
    **log_context: Any,
) -> Generator[None, None, None]:
    """
    Context manager for timing and logging database operations.

    Logs the start of the operation at debug level, and on completion logs
    either success with elapsed time or error details if an exception occurred.
    Exceptions are always re-raised.

    Args:
        operation_name: Name of the database operation (e.g., "create_crawl_job")
        **log_context: Additional context to include in all log messages

    Example:
        with timed_query("get_crawl_job", job_id=job_id):
            result = client.table("crawl_jobs").select("*").eq("id", job_id).execute()
    """
    start_time = time.time()

    logfire.debug(
        f"Starting {operation_name}",
        operation=operation_name,
        **log_context,
    )

    try:
        yield
        elapsed = time.time() - start_time
        logfire.debug(
            f"{operation_name} completed",
            operation=operation_name,
            response_time_ms=elapsed * 1000,
            **log_context,
        )
    except Exception as e:
        elapsed = time.time() - start_time
        logfire.error(
            f"{operation_name} failed",
            operation=operation_name,
            error=str(e),
            error_type=type(e).__name__,
            response_time_ms=elapsed * 1000,
            **log_context,
        )
        raise
