"""Offset pagination shared by the admin list endpoints."""
import math
from typing import Any, Callable, Dict


def paginate(query, page: int, limit: int, serialize: Callable[[Any], Dict[str, Any]],
             key: str = "items", max_limit: int = 200) -> Dict[str, Any]:
    limit = max(1, min(limit, max_limit))
    page = max(1, page)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        key: [serialize(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
