"""Cache TTL policy tests."""

import datetime

import pytest

from linkresolver.ttl import DEFAULT_TTL_SECONDS, MAX_TTL_SECONDS, NEW_LINK_TTL_SECONDS, compute_ttl

NOW = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.UTC)


@pytest.mark.parametrize(
    ("click_count", "is_new_link", "expected"),
    [
        (0, False, 43200),
        (1, False, 86400),
        (10, False, 86400),
        (11, False, 172800),
        (100, False, 172800),
        (101, False, 604800),
        (0, True, 1800),
        (5, True, 3600),
        (50, True, 7200),
        (5000, True, 604800),
    ],
)
def test_popularity_tiers(click_count: int, is_new_link: bool, expected: int) -> None:
    assert compute_ttl(click_count, is_new_link=is_new_link, now=NOW) == expected


def test_base_constants() -> None:
    assert NEW_LINK_TTL_SECONDS == 3600
    assert DEFAULT_TTL_SECONDS == 86400
    assert MAX_TTL_SECONDS == 604800


def test_clamped_to_link_expiry() -> None:
    expires_at = NOW + datetime.timedelta(minutes=10)

    assert compute_ttl(50, expires_at, now=NOW) == 600


def test_distant_expiry_does_not_extend_ttl() -> None:
    expires_at = NOW + datetime.timedelta(days=30)

    assert compute_ttl(5, expires_at, now=NOW) == 86400


def test_past_expiry_leaves_policy_ttl() -> None:
    expires_at = NOW - datetime.timedelta(minutes=1)

    assert compute_ttl(5, expires_at, now=NOW) == 86400


def test_naive_expiry_is_read_as_utc() -> None:
    expires_at = datetime.datetime(2026, 1, 1, 12, 5)

    assert compute_ttl(200, expires_at, now=NOW) == 300


def test_never_exceeds_maximum() -> None:
    for clicks in (0, 10, 100, 10_000_000):
        assert compute_ttl(clicks, now=NOW) <= MAX_TTL_SECONDS


def test_negative_click_count_rejected() -> None:
    with pytest.raises(ValueError):
        compute_ttl(-1)


def test_reference_values() -> None:
    assert compute_ttl(150, None, now=NOW) == 604800
    assert compute_ttl(50, None, now=NOW) == 172800
    assert compute_ttl(0, None, now=NOW) == 43200
    assert compute_ttl(50, NOW + datetime.timedelta(seconds=1800), now=NOW) <= 1800
