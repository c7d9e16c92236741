"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from eventpipe.queue.backend import JobQueue


def get_queue(request: Request) -> JobQueue:
    """Return the job queue handle owned by the application."""
    return request.app.state.queue


QueueDep = Annotated[JobQueue, Depends(get_queue)]
