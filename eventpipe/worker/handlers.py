"""
Job handler contract and the default event handler.

Job handlers must be idempotent - they may be executed multiple times
for the same event in case of worker crashes or retries.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from eventpipe.config import get_settings
from eventpipe.errors import ProcessingError
from eventpipe.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]


async def process_event(context: JobContext) -> JobResult:
    """
    Default handler: log the event and simulate work.
    
    The duration comes from ``handler_work_seconds``.
    """
    event = context.event
    duration = get_settings().handler_work_seconds

    logger.info(
        "Processing event",
        extra={"event_id": event.event_id, "event_type": event.type},
    )

    await asyncio.sleep(duration)

    logger.info(
        "Event processed successfully",
        extra={"event_id": event.event_id},
    )

    return JobResult(
        success=True,
        output={"event_id": event.event_id},
    )


async def execute_job(handler: JobHandler, context: JobContext) -> JobResult:
    """
    Run a handler and normalize its outcome.
    
    Exceptions raised by the handler become failed results, so the
    dispatch engine sees a single result type.
    
    Args:
        handler: The job handler.
        context: The job context.
        
    Returns:
        JobResult from the handler, with ``duration_ms`` filled in.
    """
    start = time.perf_counter()

    try:
        result = await handler(context)
    except ProcessingError as e:
        result = JobResult(success=False, error=str(e))
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": context.job_id, "error": str(e)}
        )
        result = JobResult(
            success=False,
            error=f"Handler exception: {type(e).__name__}: {e}",
        )

    if result is None:
        result = JobResult(success=True)
    elif not result.success and not result.error:
        result = result.model_copy(update={"error": "Unknown error"})

    return result.model_copy(
        update={"duration_ms": (time.perf_counter() - start) * 1000}
    )
