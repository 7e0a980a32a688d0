"""Error kinds raised by the circulation engine.

Each kind carries a stable ``code`` so the HTTP layer (and tests) can branch
on the cause.  Business errors are raised before any write in the enclosing
transaction; ``StoreBusy`` wraps lock waits and deadlocks reported by the
database and is the only kind that is safe to retry.
"""


class CirculationError(Exception):
    code = "CIRCULATION_ERROR"
    retryable = False

    def __init__(self, message: str, **data):
        super().__init__(message)
        self.message = message
        self.data = data


class BookNotFound(CirculationError):
    code = "BOOK_NOT_FOUND"


class BookUnavailable(CirculationError):
    code = "BOOK_UNAVAILABLE"


class DuplicateLoan(CirculationError):
    code = "DUPLICATE_LOAN"


class NoActiveLoan(CirculationError):
    code = "NO_ACTIVE_LOAN"


class StoreBusy(CirculationError):
    code = "STORE_BUSY"
    retryable = True
