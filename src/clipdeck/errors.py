"""Errors raised by the item store, registries and connection records."""


class ClipdeckError(Exception):
    """Base class for recoverable clipdeck errors."""


class NotFound(ClipdeckError):
    """Raised when an operation references a missing or purged id."""

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvalidState(ClipdeckError):
    """Raised when an operation is not allowed in the record's current state."""


class Conflict(ClipdeckError):
    """Raised when a hotkey sequence is already owned by another binding."""

    def __init__(self, message: str, holder=None):
        self.holder = holder
        super().__init__(message)


class ValidationError(ClipdeckError):
    """Raised on empty or malformed input."""
