"""
core/pagination.py -- Page/limit normalization and result metadata.

Query strings arrive as text, so normalize() accepts anything and never
raises: missing values take the defaults, garbage and values below 1 clamp to
1, and the limit is capped at MAX_LIMIT so no caller can request an unbounded
result set.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return 1


def normalize(page: Any = None, limit: Any = None) -> PageParams:
    """Clamp page to >= 1 and limit to [1, MAX_LIMIT].

    >>> normalize(0, 500)
    PageParams(page=1, limit=100)
    """
    page_num = max(1, _to_int(page, 1))
    limit_num = min(max(1, _to_int(limit, DEFAULT_LIMIT)), MAX_LIMIT)
    return PageParams(page=page_num, limit=limit_num)


def meta(page: int, limit: int, total: int) -> dict[str, Any]:
    """Derive the pagination envelope for a result page."""
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
