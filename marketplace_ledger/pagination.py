"""
Pagination helpers shared by list operations.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from .errors import ValidationError

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """A page of results plus the {page, limit, total, pages} envelope"""
    data: List[T] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def pagination(self) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.data],
            "pagination": self.pagination,
        }


def normalize_paging(page: Optional[int], limit: Optional[int],
                     default_limit: int, max_limit: int) -> "tuple[int, int]":
    page = 1 if page is None else page
    limit = default_limit if limit is None else limit
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}, got {limit}")
    return page, limit


def paginate(items: Sequence[T], page: int, limit: int) -> Page[T]:
    """Slice an already-ordered sequence into a Page"""
    start = (page - 1) * limit
    return Page(data=list(items[start:start + limit]), page=page, limit=limit, total=len(items))
