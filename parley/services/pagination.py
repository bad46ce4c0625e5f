import math
from dataclasses import dataclass
from typing import Sequence, TypeVar

from parley.errors import ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def paginate_result(self, total_items: int, data: Sequence[T]) -> dict:
        return {
            "total_items": total_items,
            "last_page": math.ceil(total_items / self.limit) or 1,
            "current_page": self.page,
            "data": list(data),
        }


def pagination(page: int = 1, limit: int = 10) -> Pagination:
    """Turn 1-based ``page`` and ``limit`` into a skip/limit window."""
    if page < 1:
        raise ValidationError.for_field("page", "page must be at least 1")
    if limit < 1:
        raise ValidationError.for_field("limit", "limit must be at least 1")
    return Pagination(page=page, limit=limit)
