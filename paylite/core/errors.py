"""Error taxonomy for the transaction lifecycle."""


class PayliteError(Exception):
    """Base exception for all transaction lifecycle errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(PayliteError):
    """Raised for bad input shape or values (caller-fixable, never retried)."""

    status_code = 400


class NotFoundError(PayliteError):
    """Raised when no transaction exists for the given id."""

    status_code = 404


class InvalidStateError(PayliteError):
    """Raised when an operation is not legal in the transaction's current state."""

    status_code = 400


class StorageError(PayliteError):
    """Raised when the store collaborator fails; not locally recoverable."""

    status_code = 500
