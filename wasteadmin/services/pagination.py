import math
from typing import Any, Callable, Iterable, List, Optional, Sequence, Type

from fastapi import Query
from pydantic import BaseModel

from ..config import settings
from ..schemas.common import Page


class PageParams:
    """Query-string ``page``/``limit`` as a FastAPI dependency."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
    ):
        self.page = page
        self.limit = min(limit or settings.default_page_size, settings.max_page_size)


def text_search(rows: Iterable[Any], search: Optional[str], *fields: Callable[[Any], Optional[str]]) -> List[Any]:
    """Case-insensitive substring match over the given field getters."""
    rows = list(rows)
    if not search:
        return rows
    needle = search.strip().lower()
    return [
        r for r in rows
        if any(needle in (get(r) or "").lower() for get in fields)
    ]


def paginate(rows: Sequence[Any], params: PageParams, schema: Optional[Type[BaseModel]] = None) -> Page:
    total = len(rows)
    start = (params.page - 1) * params.limit
    items = rows[start:start + params.limit]
    if schema is not None:
        items = [schema.model_validate(i) for i in items]
    return Page(
        items=list(items),
        total=total,
        page=params.page,
        limit=params.limit,
        total_pages=math.ceil(total / params.limit) if total else 0,
    )
