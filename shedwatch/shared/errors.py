"""Failure taxonomy for event processing and the heartbeat sweep."""
from __future__ import annotations


class ShedwatchError(Exception):
    """Base class for failures the event handler knows how to log and drop."""


class NotFound(ShedwatchError):
    """A referenced device, farm or alarm does not exist."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class TransientIOFailure(ShedwatchError):
    """Storage or telephony call failed; already-applied effects are kept."""

    def __init__(self, operation: str, cause: Exception | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
        self.operation = operation
        self.cause = cause


class MalformedEvent(ShedwatchError):
    """Shadow event is missing required nested fields."""

    def __init__(self, errors: list[dict], payload=None):
        fields = ", ".join(".".join(str(p) for p in e.get("loc", ())) for e in errors)
        super().__init__(f"malformed shadow event ({fields or 'unknown'})")
        self.errors = errors
        self.payload = payload
