"""
Offset pagination for list endpoints.
"""

import math
from typing import Any, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession


async def paginate(db: AsyncSession, query, page: int = 1, limit: int = 20) -> Tuple[list, int]:
    """
    Run `query` for one page.

    Returns:
        (items, total) where total counts every row matching the query
    """
    page = max(page, 1)
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_query)).scalar_one()

    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return result.scalars().all(), total


def page_envelope(items: list, total: int, page: int, limit: int) -> dict[str, Any]:
    return {
        "items": items,
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }
