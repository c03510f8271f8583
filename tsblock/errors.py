"""
Error kinds raised by tsblock.

Absent records, inverted time ranges and empty aggregates are not errors;
everything below is something a caller can act on.
"""


class TSBlockError(Exception):
    """Base class for all tsblock errors."""
    pass


class StoreError(TSBlockError):
    """The backing key/map store failed an operation."""
    pass


class StoreConnectionError(StoreError):
    """The backing store could not be reached or refused the credentials."""
    pass


class GenerationError(StoreError):
    """A generation-checked write found the record changed since it was read."""

    def __init__(self, key, expected: int, actual: int):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"Generation mismatch for {key}: expected {expected}, found {actual}")


class InvalidArgumentError(TSBlockError, ValueError):
    """Malformed input: bad capacity, empty series name, unknown operation, ..."""
    pass
