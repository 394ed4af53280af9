"""Short code format validation tests."""

import pytest

from linkresolver.exceptions import InvalidShortCodeError, ResolverError
from linkresolver.validation import validate_short_code


@pytest.mark.parametrize("short_code", ["abc", "abc123", "ABCdef1234", "000"])
def test_accepts_well_formed_codes(short_code: str) -> None:
    assert validate_short_code(short_code) == short_code


@pytest.mark.parametrize("short_code", ["", "ab", "abcdefghijk"])
def test_rejects_codes_outside_length_bounds(short_code: str) -> None:
    with pytest.raises(InvalidShortCodeError) as exc_info:
        validate_short_code(short_code)

    assert "between 3 and 10 characters" in exc_info.value.message
    assert exc_info.value.short_code == short_code


@pytest.mark.parametrize("short_code", ["abc-12", "abc_12", "abc 12", "abc/12", "ab%20", "café"])
def test_rejects_non_alphanumeric_codes(short_code: str) -> None:
    with pytest.raises(InvalidShortCodeError, match="alphanumeric"):
        validate_short_code(short_code)


def test_custom_bounds() -> None:
    assert validate_short_code("ab", min_length=2, max_length=4) == "ab"
    with pytest.raises(InvalidShortCodeError, match="between 2 and 4 characters"):
        validate_short_code("abcde", min_length=2, max_length=4)


def test_rejects_non_string_input() -> None:
    with pytest.raises(InvalidShortCodeError):
        validate_short_code(None)  # type: ignore[arg-type]


def test_error_hierarchy() -> None:
    with pytest.raises(ResolverError):
        validate_short_code("!!")
    with pytest.raises(ValueError):
        validate_short_code("!!")
