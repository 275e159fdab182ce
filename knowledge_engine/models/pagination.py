"""Paginated list responses."""

import math
from typing import Generic, List, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Paginated(BaseModel, Generic[T]):
    """One page of a newest-first listing."""

    items: List[T]
    total_docs: int
    total_pages: int
    current_page: int
    limit: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, items: List[T], total: int, page: int, limit: int) -> "Paginated[T]":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            items=items,
            total_docs=total,
            total_pages=total_pages,
            current_page=page,
            limit=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


def page_offset(page: int, limit: int) -> int:
    """Row offset of a 1-based page."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if limit < 1:
        raise ValueError("limit must be >= 1")
    return (page - 1) * limit
