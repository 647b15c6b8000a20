"""Pydantic schemas for system announcements."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Announcement(BaseModel):
    """Row of the ``announcements`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    title: str
    content: str = ""


class AnnouncementCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field("", max_length=20000)


class AnnouncementUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    content: str | None = Field(None, max_length=20000)
