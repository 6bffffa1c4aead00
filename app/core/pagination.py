"""Pagination helpers."""

import math

from pydantic import BaseModel


class PageInfo(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    hasMore: bool


def paginate(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """Clamp page/limit; return (page, limit, skip)."""
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def page_info(page: int, limit: int, skip: int, returned: int, total: int) -> PageInfo:
    return PageInfo(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if limit else 0,
        hasMore=skip + returned < total,
    )
