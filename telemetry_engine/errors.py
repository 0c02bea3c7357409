"""
Engine error types.

Validation problems are raised as ``ValidationError`` and carry the
offending field and value so the request layer can echo them back.
Missing systems and points are not errors: lookups return ``None``.

CHANGELOG:
- 2026-02-20: Initial creation
"""


class EngineError(Exception):
    """Base class for errors raised by the telemetry engine."""


class ValidationError(EngineError):
    """Input rejected synchronously; never worth retrying.

    Attributes:
        field: Name of the rejected input (e.g. ``logical_path_stem``).
        value: The offending value, echoed back verbatim.
        reason: Human-readable explanation.
    """

    def __init__(self, field: str, value: object, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")

    def to_dict(self) -> dict:
        """Return a JSON-serialisable description of the error."""
        return {"field": self.field, "value": self.value, "reason": self.reason}
