"""
Coordination error taxonomy.
Raised by the domain models and the proposal coordinator, translated to
HTTP responses by the routes. Never swallowed inside the core.
"""


class CoordinationError(Exception):
    """Base exception for partner coordination operations."""

    status_code = 400

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        error_code: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.error_code = error_code
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "error_code": self.error_code,
            "recoverable": self.recoverable,
        }


class InvalidSlotError(CoordinationError):
    """Malformed day/hour, non-positive duration, or out-of-range plan gap."""

    status_code = 400


class NotAuthorizedError(CoordinationError):
    """Wrong actor for the operation."""

    status_code = 403


class NotFoundError(CoordinationError):
    """Unknown id, or a proposal/session that is already terminal."""

    status_code = 404


class ConflictError(CoordinationError):
    """An active proposal already exists for the pair, or the thread is capped."""

    status_code = 409


class UnavailableError(CoordinationError):
    """Requested slot is not inside the pair's current availability overlap."""

    status_code = 422
