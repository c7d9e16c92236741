"""
Reaper module.
Contains the lease reaper for recovering jobs from crashed workers.
"""

from eventpipe.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
