"""Short-code format validation.

Runs before any cache or store access so malformed input never costs a
round-trip.
"""

from linkresolver.exceptions import InvalidShortCodeError

__all__ = ["MIN_SHORT_CODE_LENGTH", "MAX_SHORT_CODE_LENGTH", "validate_short_code"]

MIN_SHORT_CODE_LENGTH = 3
MAX_SHORT_CODE_LENGTH = 10


def validate_short_code(
    short_code: str,
    min_length: int = MIN_SHORT_CODE_LENGTH,
    max_length: int = MAX_SHORT_CODE_LENGTH,
) -> str:
    """Return ``short_code`` unchanged if well formed.

    Raises:
        InvalidShortCodeError: If the length is outside ``[min_length, max_length]``
            or the code contains anything but ASCII letters and digits.
    """
    if not isinstance(short_code, str) or not min_length <= len(short_code) <= max_length:
        raise InvalidShortCodeError(
            short_code,
            f"Short code must be between {min_length} and {max_length} characters",
        )
    if not (short_code.isascii() and short_code.isalnum()):
        raise InvalidShortCodeError(short_code, "Short code must be alphanumeric")
    return short_code
