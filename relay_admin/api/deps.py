"""Shared API dependencies."""

from fastapi import HTTPException, Query, status
from pydantic import ValidationError

from relay_admin.core import settings
from relay_admin.schemas.common import SortItem


def get_sort_items(
    sort: list[str] | None = Query(
        None, description="Sort key, repeatable: 'created_at:desc', 'name:asc'"
    ),
) -> list[SortItem]:
    """Parse ``sort`` query parameters; an empty result means the default order."""
    if not sort:
        return []
    try:
        return [SortItem.parse(value) for value in sort]
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid sort parameter: {e.errors()[0]['msg']}",
        ) from e


def page_size_query(
    page_size: int = Query(settings.default_page_size, ge=1, le=500, description="Items per page"),
) -> int:
    return page_size
