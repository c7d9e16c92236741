"""
Deduplication key derivation.
"""

from eventpipe.types.event import Event


def derive_key(event: Event) -> str:
    """
    Compute the stable job identity for an event.

    The event id is used as-is, so at most one live job exists per event.
    """
    return event.event_id
