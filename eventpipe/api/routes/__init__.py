"""
API routes module.
"""

from eventpipe.api.routes.health import router as health_router
from eventpipe.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
