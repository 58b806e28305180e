from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlmodel import Session, select

MAX_PAGE_SIZE = 100


def paginate(
    *,
    session: Session,
    query,
    page: int = 1,
    limit: int = 10,
    serialize: Optional[Callable[[Any], Any]] = None,
) -> Dict[str, Any]:
    """
    Run ``query`` one page at a time.

    Returns the keys of a PaymentHistoryResponse; rows pass through
    ``serialize`` when given. Out-of-range values fall back to page 1 and
    the default size, and the size is capped at MAX_PAGE_SIZE.
    """
    page = page if page and page > 0 else 1
    limit = min(limit if limit and limit > 0 else 10, MAX_PAGE_SIZE)

    total = session.exec(
        select(func.count()).select_from(query.subquery())
    ).one()

    rows = session.exec(
        query.offset((page - 1) * limit).limit(limit)
    ).all()

    return {
        "total_items": total,
        "total_pages": (total + limit - 1) // limit,
        "current_page": page,
        "limit": limit,
        "results": [serialize(row) for row in rows] if serialize else list(rows),
    }
