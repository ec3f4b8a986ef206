"""Usage analytics: page-view recording and daily counts for the admin dashboard."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from raceup_api.models.page_view import PageView
from raceup_api.models.user import User


async def record_page_view(
    session: AsyncSession,
    path: str,
    referrer: str | None = None,
    user_agent: str | None = None,
    country: str | None = None,
) -> None:
    session.add(
        PageView(
            path=path,
            referrer=referrer or None,
            user_agent=(user_agent or "")[:500] or None,
            country=(country or "")[:2].upper() or None,
        )
    )
    await session.flush()


async def _daily_counts(session: AsyncSession, column, days: int) -> list[dict]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    day = func.date(column)
    r = await session.execute(
        select(day.label("date"), func.count().label("count"))
        .where(column >= since)
        .group_by(day)
        .order_by(day)
    )
    # SQLite returns the day as a string, PostgreSQL as a date
    return [{"date": str(d), "count": int(c)} for d, c in r.all()]


async def get_registration_stats(session: AsyncSession, days: int = 30) -> list[dict]:
    return await _daily_counts(session, User.created_at, days)


async def get_page_view_stats(session: AsyncSession, days: int = 30) -> list[dict]:
    return await _daily_counts(session, PageView.created_at, days)


async def get_admin_stats(session: AsyncSession) -> dict:
    users = await session.execute(select(func.count(User.id)))
    admins = await session.execute(select(func.count(User.id)).where(User.role != "user"))
    views = await session.execute(select(func.count(PageView.id)))
    return {
        "total_users": int(users.scalar_one()),
        "total_admins": int(admins.scalar_one()),
        "total_page_views": int(views.scalar_one()),
    }
