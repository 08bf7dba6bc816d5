"""
Popularity Error Taxonomy

Every error raised by the recorder, rollup and trending services derives
from PopularityError and carries the HTTP status the API layer maps it to.
"""

from typing import Optional


class PopularityError(Exception):
    """Base class for popularity subsystem errors"""

    status_code: int = 500
    public_message: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def public(self) -> str:
        """Message safe to return to API callers"""
        return self.public_message or self.message


class NotFoundError(PopularityError):
    """Referenced item (or filter scope) does not exist"""

    status_code = 404


class UnauthorizedError(PopularityError):
    """Missing or wrong shared secret"""

    status_code = 401
    public_message = "Unauthorized"


class ValidationError(PopularityError):
    """Malformed timeframe, page, perPage, date or event type"""

    status_code = 400


class StorageError(PopularityError):
    """Persistence failure; details are logged, never returned"""

    status_code = 500
    public_message = "Internal server error"


class RollupPartialFailure(PopularityError):
    """One rollup stage failed; the whole run is reported as failed"""

    status_code = 500

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"rollup stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause
