"""Page/limit helpers shared by list endpoints."""
import math
from typing import Dict, Tuple


def normalize_paging(page: int, limit: int, default_limit: int = 20, max_limit: int = 100) -> Tuple[int, int]:
    p = page if page and page > 0 else 1
    lim = limit if limit and limit > 0 else default_limit
    return p, min(lim, max_limit)


def page_info(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }
