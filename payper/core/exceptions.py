"""Domain errors raised by the order lifecycle and its stores.

The HTTP layer maps them to status codes in ``payper.main``.
"""


class PayperError(Exception):
    """Base class for every error the service raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PayperError):
    """Input rejected before any write: empty cart, missing table, bad quantity."""

    status_code = 400


class NotFoundError(PayperError):
    status_code = 404


class StateConflictError(PayperError):
    """The operation is not allowed in the order's current state."""

    status_code = 409


class ConflictError(StateConflictError):
    """Optimistic lock conflict: the stored version moved between read and write."""

    def __init__(self, message: str, current_version: int = None):
        super().__init__(message)
        self.current_version = current_version


class PersistenceError(PayperError):
    status_code = 503
