"""
Job handler registry.

Handlers are looked up by the ``job_type`` key of a job's payload. The
queue delivers at least once, so handlers must be idempotent: a job may
run again after a worker crash or an expired lease.
"""

import logging
from typing import Awaitable, Callable

from leasequeue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

JOB_TYPE_KEY = "job_type"

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Example:
        @register_handler("send_email")
        async def handle_send_email(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def get_handler(job_type: str) -> JobHandler | None:
    """Get the handler for a job type, or None."""
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """Return the payload unchanged. Useful for smoke tests."""
    return JobResult(success=True, output={"echo": context.payload})


async def execute_job(context: JobContext) -> JobResult:
    """
    Run the handler for a job.

    A missing handler or an exception raised by the handler becomes an
    unsuccessful JobResult, which the worker reports through ``error``.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    job_type = context.payload.get(JOB_TYPE_KEY)
    handler = get_handler(job_type) if job_type is not None else None

    if handler is None:
        logger.error(
            f"No handler for job type: {job_type}",
            extra={"job_id": str(context.job_id)}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job type: {job_type}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "job_type": job_type}
        )
        return JobResult(
            success=False,
            error=f"{type(e).__name__}: {e}",
        )
