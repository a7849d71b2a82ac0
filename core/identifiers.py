"""
core/identifiers.py -- Slugs, opaque tokens, and order numbers.

Three small generators with one shared shape: derive a candidate, ask a
caller-supplied predicate whether it is taken, and move to the next candidate
until it is free. The predicate is where the store comes in; this module does
no I/O of its own.

Check-then-write is not atomic. Two concurrent creations of "Shoes" can both
see "shoes" as free. create_with_unique_slug() closes that gap for stores that
put a UNIQUE constraint on the slug column: the constrained insert is the real
collision signal and the next candidate is tried.

Order numbers have no such guard (there is no order table yet) and the
three-digit sequence overflows to four digits past 999 orders in a day.

Layer rule: stdlib only.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional, TypeVar

from core.clock import Clock, utc_now

logger = logging.getLogger("shopfront.identifiers")

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^a-z0-9_-]+")
_HYPHEN_RUN_RE = re.compile(r"-{2,}")


class SlugCollision(Exception):
    """Raised by a store insert when its UNIQUE index rejects the slug."""

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f"slug already taken: {slug}")


def slugify(text: str) -> str:
    """Turn free text into a URL-safe slug.

    >>> slugify("Men's T-Shirt!!")
    'mens-t-shirt'
    """
    slug = str(text).lower().strip()
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _UNSAFE_RE.sub("", slug)
    slug = _HYPHEN_RUN_RE.sub("-", slug)
    return slug.strip("-")


def unique_slug(text: str, exists: Callable[[str], bool]) -> str:
    """Return slugify(text), suffixed -1, -2, ... until exists() says it is free.

    exists must exclude the record being updated, otherwise a record collides
    with its own unchanged slug.
    """
    base = slugify(text)
    candidate = base
    counter = 1
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def create_with_unique_slug(
    text: str,
    exists: Callable[[str], bool],
    insert: Callable[[str], T],
    attempts: int = 5,
) -> T:
    """Insert a record under a unique slug, retrying on constraint collisions.

    insert(slug) performs the write and raises SlugCollision when the store's
    UNIQUE index rejects the slug (a concurrent writer won the race). That slug
    is then treated as taken and the next free candidate is tried. After
    `attempts` collisions the last SlugCollision propagates.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    taken: set[str] = set()

    def _exists(candidate: str) -> bool:
        return candidate in taken or exists(candidate)

    last_error: Optional[SlugCollision] = None
    for _ in range(attempts):
        slug = unique_slug(text, _exists)
        try:
            return insert(slug)
        except SlugCollision as exc:
            logger.info("Slug %r taken by a concurrent write, retrying", exc.slug)
            taken.add(exc.slug)
            last_error = exc
    raise last_error  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Opaque tokens (email verification, password reset)
#
# Stored as-is and used as lookup keys, so their only protection is entropy.
# Never log them.
# ---------------------------------------------------------------------------


def random_token(byte_length: int = 32) -> str:
    """Return byte_length random bytes as hex (64 characters by default)."""
    return secrets.token_hex(byte_length)


def expiry_timestamp(hours: float, clock: Clock = utc_now) -> datetime:
    return clock() + timedelta(hours=hours)


# ---------------------------------------------------------------------------
# Order numbers
# ---------------------------------------------------------------------------


def format_order_number(counter: int, date: Optional[datetime] = None) -> str:
    """Format ORD-YYYYMMDD-NNN.

    >>> format_order_number(1, datetime(2025, 11, 25))
    'ORD-20251125-001'
    """
    date = date or utc_now()
    return f"ORD-{date:%Y%m%d}-{counter:03d}"


def unique_order_number(exists: Callable[[str], bool], clock: Clock = utc_now) -> str:
    """Return the first unused order number for today, counting up from 001."""
    today = clock()
    counter = 1
    candidate = format_order_number(counter, today)
    while exists(candidate):
        counter += 1
        candidate = format_order_number(counter, today)
    return candidate
