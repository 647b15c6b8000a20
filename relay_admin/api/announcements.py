"""Announcement API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_admin.api.deps import get_sort_items, page_size_query
from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.announcement import (
    Announcement,
    AnnouncementCreate,
    AnnouncementUpdate,
)
from relay_admin.schemas.common import Page, SortItem
from relay_admin.services.repository import TableRepository, announcement_repository

router = APIRouter(prefix="/announcements", tags=["announcements"])


def get_announcement_repository(
    store: StoreClient = Depends(get_store),
) -> TableRepository[Announcement]:
    """Dependency to get the announcement repository."""
    return announcement_repository(store)


@router.get("", response_model=Page[Announcement])
async def list_announcements(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Depends(page_size_query),
    sort_by: list[SortItem] = Depends(get_sort_items),
    announcements: TableRepository[Announcement] = Depends(get_announcement_repository),
) -> Page[Announcement]:
    return await announcements.fetch_page(page=page, page_size=page_size, sort_by=sort_by)


@router.post("", response_model=Announcement, status_code=status.HTTP_201_CREATED)
async def create_announcement(
    data: AnnouncementCreate,
    announcements: TableRepository[Announcement] = Depends(get_announcement_repository),
) -> Announcement:
    return await announcements.create(data.model_dump())


@router.patch("/{announcement_id}", response_model=Announcement)
async def update_announcement(
    announcement_id: int,
    data: AnnouncementUpdate,
    announcements: TableRepository[Announcement] = Depends(get_announcement_repository),
) -> Announcement:
    values = data.model_dump(exclude_unset=True)
    if not values:
        announcement = await announcements.get(announcement_id)
        if announcement is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Announcement {announcement_id} not found",
            )
        return announcement
    return await announcements.update(announcement_id, values)


@router.delete("/{announcement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_announcement(
    announcement_id: int,
    announcements: TableRepository[Announcement] = Depends(get_announcement_repository),
) -> None:
    if not await announcements.delete(announcement_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Announcement {announcement_id} not found",
        )
