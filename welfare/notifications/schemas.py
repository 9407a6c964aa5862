"""Notification response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    id: UUID
    title: str
    message: str
    type: str
    priority: str
    status: str
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None
    channels: dict = Field(default_factory=dict)
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    is_read: bool = False
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class NotificationPageResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class NotificationStatsResponse(BaseModel):
    total: int
    unread: int
    by_type: dict[str, int]
    by_priority: dict[str, int]
    by_status: dict[str, int]
