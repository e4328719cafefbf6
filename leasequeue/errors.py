"""
Exception hierarchy for the queue.

Only programming errors at the library boundary are raised from here.
Store failures surface as SQLAlchemy exceptions and are never wrapped;
"no job" and "lease no longer owned" are ordinary ``None`` results.
"""


class QueueError(Exception):
    """Base class for all leasequeue errors."""


class InvalidFieldError(QueueError):
    """An insert override or change names a field the queue does not own."""

    def __init__(self, field: str):
        super().__init__(f"Unknown job control field: {field!r}")
        self.field = field


class InvalidCriteriaError(QueueError):
    """A filter value cannot be expressed against the store."""

    def __init__(self, key: str, value: object):
        super().__init__(
            f"Unsupported criteria value for {key!r}: {type(value).__name__}"
        )
        self.key = key
        self.value = value


class QueueNotInitializedError(QueueError, RuntimeError):
    """The module-level engine was used before init_db() was called."""

    def __init__(self) -> None:
        super().__init__("Database not initialized. Call init_db() first.")


class DatabaseMismatchError(QueueError):
    """init_db() was asked for a database other than the one already open."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Shared engine is bound to {current}, not {requested}. "
            "Call close_db() before switching databases."
        )
        self.current = current
        self.requested = requested
