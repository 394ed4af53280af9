"""Cache lifetime policy for short links.

Popular links stay cached longer; links that have never been clicked expire
sooner. A link is never cached past its own expiration.

==============  ===========  ==============
click_count     new link     existing link
==============  ===========  ==============
0               1800         43200
1..10           3600         86400
11..100         7200         172800
>100            604800       604800
==============  ===========  ==============
"""

import datetime

__all__ = [
    "NEW_LINK_TTL_SECONDS",
    "DEFAULT_TTL_SECONDS",
    "MAX_TTL_SECONDS",
    "compute_ttl",
]

NEW_LINK_TTL_SECONDS = 3600
DEFAULT_TTL_SECONDS = 86400
MAX_TTL_SECONDS = 604800

POPULAR_CLICK_THRESHOLD = 100
ACTIVE_CLICK_THRESHOLD = 10


def compute_ttl(
    click_count: int,
    expires_at: datetime.datetime | None = None,
    *,
    is_new_link: bool = False,
    now: datetime.datetime | None = None,
) -> int:
    """Return the cache TTL in seconds for a link.

    Args:
        click_count: Clicks recorded for the link so far.
        expires_at: The link's own expiration, if any. Naive values are read as UTC.
        is_new_link: Use the short base lifetime for a link that was just created.
        now: Reference time for the expiry clamp; defaults to the current UTC time.

    Raises:
        ValueError: If ``click_count`` is negative.
    """
    if click_count < 0:
        raise ValueError(f"click_count must be non-negative, got {click_count!r}")

    base = NEW_LINK_TTL_SECONDS if is_new_link else DEFAULT_TTL_SECONDS
    if click_count > POPULAR_CLICK_THRESHOLD:
        ttl = MAX_TTL_SECONDS
    elif click_count > ACTIVE_CLICK_THRESHOLD:
        ttl = base * 2
    elif click_count == 0:
        ttl = base // 2
    else:
        ttl = base

    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=datetime.UTC)
        now = now or datetime.datetime.now(datetime.UTC)
        remaining = (expires_at - now).total_seconds()
        if 0 < remaining < ttl:
            ttl = int(remaining)

    return min(ttl, MAX_TTL_SECONDS)
