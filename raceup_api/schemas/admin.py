"""Pydantic schemas for admin and tracking endpoints."""

from typing import Literal

from pydantic import BaseModel, Field

from raceup_api.schemas.auth import UserOut


class RoleUpdateBody(BaseModel):
    role: Literal["user", "admin"]


class UserListResponse(BaseModel):
    users: list[UserOut]
    total: int
    page: int
    limit: int


class DailyCount(BaseModel):
    date: str
    count: int


class AdminStats(BaseModel):
    total_users: int
    total_admins: int
    total_page_views: int


class PageViewBody(BaseModel):
    path: str = Field(min_length=1, max_length=500)
    referrer: str | None = Field(None, max_length=500)
