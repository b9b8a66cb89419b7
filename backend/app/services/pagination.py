"""Offset pagination shared by list endpoints."""
import math
from typing import Any, Dict, List, Tuple

from ..config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def clamp_page(page: int, page_size: int) -> Tuple[int, int]:
    page = max(1, page or 1)
    page_size = min(max(1, page_size or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    return page, page_size


def paginate(query, page: int, page_size: int) -> Tuple[List[Any], Dict[str, int]]:
    """Return one page of `query` plus pagination metadata."""
    page, page_size = clamp_page(page, page_size)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return items, {
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }
