"""Errors raised by moderation, draft and user operations.

Each carries the HTTP status the API answers with.
"""

__all__ = [
    "MarketplaceError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "Conflict",
    "ValidationFailure",
    "StoreFailure",
]


class MarketplaceError(Exception):
    status_code: int = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    status_code = 409


class ValidationFailure(MarketplaceError):
    status_code = 422


class StoreFailure(MarketplaceError):
    """The store failed; the enclosing transaction was rolled back."""

    status_code = 500
