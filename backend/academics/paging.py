"""Paging and sorting parameters shared by list queries."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, Sequence, TypeVar

from .errors import ValidationFailure

T = TypeVar("T")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageRequest:
    page: int = 0
    size: int = 20
    sort: str = "id"
    direction: str = "asc"

    @classmethod
    def of(
        cls,
        page: int = 0,
        size: int = 20,
        sort: Optional[str] = None,
        direction: Optional[str] = None,
        *,
        allowed_sorts: Sequence[str] = ("id",),
    ) -> "PageRequest":
        """Validate raw paging input against the entity's sortable fields."""
        errors = {}
        if page is None or page < 0:
            errors["page"] = "must be greater than or equal to 0"
        if size is None or size <= 0 or size > MAX_PAGE_SIZE:
            errors["size"] = f"must be between 1 and {MAX_PAGE_SIZE}"
        sort = (sort or "id").strip()
        if sort not in allowed_sorts:
            errors["sort"] = "must be one of: " + ", ".join(allowed_sorts)
        direction = (direction or "asc").strip().lower()
        if direction not in ("asc", "desc"):
            errors["direction"] = "must be 'asc' or 'desc'"
        if errors:
            raise ValidationFailure(errors)
        return cls(page=page, size=size, sort=sort, direction=direction)

    @property
    def offset(self) -> int:
        return self.page * self.size

    @property
    def descending(self) -> bool:
        return self.direction == "desc"


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size


def paginate(rows: Iterable[T], request: PageRequest) -> Page[T]:
    """Sort and slice an in-memory sequence. `None` values sort first."""
    def _key(row):
        value = getattr(row, request.sort, None)
        if isinstance(value, str):
            value = value.lower()
        return (value is not None, value)

    ordered = sorted(rows, key=_key, reverse=request.descending)
    start = request.offset
    return Page(items=ordered[start:start + request.size], page=request.page, size=request.size, total=len(ordered))


def matches_search(search: Optional[str], *values: Optional[str]) -> bool:
    """Case-insensitive substring match against any of the given fields."""
    if not search:
        return True
    needle = search.strip().lower()
    if not needle:
        return True
    return any(v is not None and needle in v.lower() for v in values)
