"""
Database module.
Contains database connection, models, and repository implementations.
"""

from eventpipe.db.connection import Database
from eventpipe.db.models import Base, Job

__all__ = [
    "Database",
    "Job",
    "Base",
]
