"""Public page-view tracking (no auth)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from raceup_api.db.session import get_db
from raceup_api.schemas.admin import PageViewBody
from raceup_api.services.analytics import record_page_view

router = APIRouter(prefix="/track", tags=["tracking"])


@router.post("/pageview", status_code=201, summary="Record a page view")
async def pageview(
    request: Request,
    body: PageViewBody,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    await record_page_view(
        session,
        path=body.path,
        referrer=body.referrer,
        user_agent=request.headers.get("User-Agent"),
        # Set by Cloudflare in front of the API
        country=request.headers.get("CF-IPCountry"),
    )
    return {"ok": True}
