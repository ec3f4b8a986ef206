"""Admin: dashboard stats and user management. Requires admin or super_admin."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from raceup_api.api.deps import get_session_orchestrator, require_admin
from raceup_api.db.session import get_db
from raceup_api.models.user import User
from raceup_api.schemas.admin import AdminStats, DailyCount, RoleUpdateBody, UserListResponse
from raceup_api.schemas.auth import UserOut
from raceup_api.services.analytics import get_admin_stats, get_page_view_stats, get_registration_stats
from raceup_api.services.auth_store import SqlAuthStore
from raceup_api.services.sessions import SessionOrchestrator

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    responses={401: {"description": "Not authenticated"}, 403: {"description": "Administrator access required"}},
)

MAX_PAGE_SIZE = 100


@router.get("/stats", response_model=AdminStats, summary="Global counters")
async def stats(session: Annotated[AsyncSession, Depends(get_db)]) -> AdminStats:
    return AdminStats(**await get_admin_stats(session))


@router.get("/stats/registrations", response_model=list[DailyCount], summary="Registrations per day")
async def registration_stats(
    session: Annotated[AsyncSession, Depends(get_db)],
    days: int = Query(30, ge=1, le=365),
) -> list[DailyCount]:
    return [DailyCount(**row) for row in await get_registration_stats(session, days)]


@router.get("/stats/pageviews", response_model=list[DailyCount], summary="Page views per day")
async def page_view_stats(
    session: Annotated[AsyncSession, Depends(get_db)],
    days: int = Query(30, ge=1, le=365),
) -> list[DailyCount]:
    return [DailyCount(**row) for row in await get_page_view_stats(session, days)]


@router.get("/users", response_model=UserListResponse, summary="List users with optional search")
async def list_users(
    session: Annotated[AsyncSession, Depends(get_db)],
    q: str = Query("", max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
) -> UserListResponse:
    limit = min(limit, MAX_PAGE_SIZE)
    users, total = await SqlAuthStore(session).list_users(q.strip(), page, limit)
    return UserListResponse(
        users=[UserOut.model_validate(u) for u in users],
        total=total,
        page=page,
        limit=limit,
    )


@router.patch(
    "/users/{user_id}/role",
    response_model=UserOut,
    summary="Change a user's role (super admin only)",
    responses={404: {"description": "User not found"}},
)
async def update_user_role(
    request: Request,
    user_id: str,
    body: RoleUpdateBody,
    actor: Annotated[User, Depends(require_admin)],
    sessions: Annotated[SessionOrchestrator, Depends(get_session_orchestrator)],
) -> UserOut:
    user = await sessions.change_role(actor, user_id, body.role, ip_address=get_remote_address(request))
    return UserOut.model_validate(user)
