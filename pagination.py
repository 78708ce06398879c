"""In-memory pagination over an already merged and filtered result list."""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from property_store import PropertyRecord


@dataclass
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    def to_dict(self) -> Dict[str, Any]:
        # Wire keys are camelCase for existing API clients.
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


@dataclass
class SearchResultPage:
    data: List[PropertyRecord] = field(default_factory=list)
    pagination: Optional[Pagination] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [r.to_dict() for r in self.data],
            "pagination": self.pagination.to_dict(),
        }


def paginate(records: Sequence[PropertyRecord], page: int, limit: int) -> SearchResultPage:
    """Slice *records* into one page.

    A page past the end is empty, never an error.  page and limit are
    validated upstream by SearchFilters.
    """
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be >= 1")
    total = len(records)
    offset = (page - 1) * limit
    total_pages = math.ceil(total / limit) if total else 0
    return SearchResultPage(
        data=list(records[offset:offset + limit]),
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )
