# src/utils/errors.py


class StoreError(Exception):
    """Base class for failures talking to the visit/notification store."""


class NotFound(StoreError):
    """No matching row. Callers resolve this to a placeholder."""


class ConstraintViolation(StoreError):
    """A uniqueness constraint rejected the write (e.g. duplicate notification)."""


class TransientIO(StoreError):
    """Store unreachable or the connection dropped; retry on the next tick."""


class Inconsistent(StoreError):
    """A multi-step write was only partially applied."""
