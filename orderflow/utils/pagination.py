from typing import Any, Callable, Dict, Tuple


def normalize_paging(page: int, page_size: int, max_page_size: int = 100) -> Tuple[int, int]:
    p = page if page and page > 0 else 1
    ps = page_size if page_size and page_size > 0 else 20
    ps = min(ps, max_page_size)
    return p, ps


def paginate(query, page: int, page_size: int, serialize: Callable[[Any], Dict]) -> Dict:
    """Run ``query`` for one page and wrap the rows with paging metadata."""
    p, ps = normalize_paging(page, page_size)
    total = query.order_by(None).count()
    rows = query.offset((p - 1) * ps).limit(ps).all()
    return {
        "items": [serialize(row) for row in rows],
        "total_items": total,
        "page": p,
        "page_size": ps,
        "total_pages": (total + ps - 1) // ps,
    }
