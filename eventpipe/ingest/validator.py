"""
Event validation gate.

Turns raw record bytes into an Event or raises a ValidationError.
Pure function of its input; no side effects.
"""

import json

import pydantic

from eventpipe.errors import MalformedPayload, SchemaViolation
from eventpipe.types.event import Event


def validate(raw: bytes | None) -> Event:
    """
    Parse and validate a raw log record.

    Args:
        raw: The record value as read from the log.

    Returns:
        The validated Event.

    Raises:
        MalformedPayload: If the bytes are empty or not a JSON object.
        SchemaViolation: If a required field is missing, empty, or mistyped.
    """
    if not raw:
        raise MalformedPayload("Empty record value")

    try:
        parsed = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayload("Record is not valid JSON", cause=e) from e

    if not isinstance(parsed, dict):
        raise MalformedPayload(
            f"Record must be a JSON object, got {type(parsed).__name__}"
        )

    try:
        return Event.model_validate(parsed)
    except pydantic.ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise SchemaViolation(
            f"Invalid event: {', '.join(fields)}",
            cause=e,
            context={"fields": fields},
        ) from e
