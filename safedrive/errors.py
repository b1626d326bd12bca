"""Structured error taxonomy for the telemetry core.

Every error carries a machine-readable ``kind`` and a ``context`` dict so
callers (and the HTTP layer) can branch on the kind instead of parsing
messages. None of them is fatal to the process.
"""
from typing import Any, Dict, Optional


class TelemetryError(Exception):
    """Base class for all recoverable telemetry core errors."""

    kind = "TelemetryError"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "context": self.context}


class ValidationError(TelemetryError):
    """Malformed input; the caller should correct it and retry."""

    kind = "ValidationError"


class InvalidValue(ValidationError):
    """A sample field is out of its valid range."""

    kind = "InvalidValue"


class InvalidState(TelemetryError):
    """Operation attempted against a trip in the wrong lifecycle state."""

    kind = "InvalidState"


class OutOfOrder(TelemetryError):
    """Sample is older than the last accepted one and was dropped."""

    kind = "OutOfOrder"


class NotFound(TelemetryError):
    """Unknown trip or user reference."""

    kind = "NotFound"
