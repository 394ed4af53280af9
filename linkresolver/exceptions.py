"""Exceptions raised by the link resolver."""

__all__ = ["ResolverError", "InvalidShortCodeError"]


class ResolverError(Exception):
    """Base class for link resolver errors."""


class InvalidShortCodeError(ResolverError, ValueError):
    """Raised when a short code is malformed."""

    def __init__(self, short_code: str, message: str):
        super().__init__(message)
        self.short_code = short_code
        self.message = message
