"""Auth: register, login, Google/Apple sign-in, refresh, me, logout, account deletion."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from slowapi.util import get_remote_address

from raceup_api.api.deps import get_current_claims, get_current_user, get_session_orchestrator
from raceup_api.core.rate_limit import AUTH_RATE_LIMIT, limiter
from raceup_api.core.tokens import AccessTokenClaims
from raceup_api.models.user import User
from raceup_api.schemas.auth import (
    AppleAuthBody,
    DeleteAccountBody,
    GoogleAuthBody,
    LoginBody,
    MessageResponse,
    RefreshBody,
    RegisterBody,
    TokenResponse,
    UserOut,
)
from raceup_api.services.sessions import AuthResult, SessionOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

Sessions = Annotated[SessionOrchestrator, Depends(get_session_orchestrator)]


def _token_response(result: AuthResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        user=UserOut.model_validate(result.user),
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=201,
    summary="Register a new user",
    responses={
        409: {"description": "Email or username already registered"},
        422: {"description": "Invalid email, weak password or bad username"},
    },
)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, body: RegisterBody, sessions: Sessions) -> TokenResponse:
    result = await sessions.register(
        email=body.email,
        password=body.password,
        username=body.username,
        first_name=body.first_name,
        last_name=body.last_name,
        birth_date=body.birth_date,
    )
    return _token_response(result)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={
        400: {"description": "Account uses Google or Apple sign-in"},
        401: {"description": "Invalid email or password"},
    },
)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, body: LoginBody, sessions: Sessions) -> TokenResponse:
    return _token_response(await sessions.login(body.email, body.password))


@router.post(
    "/google",
    response_model=TokenResponse,
    summary="Sign in or sign up with a Google access token",
    responses={
        401: {"description": "Google verification failed"},
        404: {"description": "Google sign-in not enabled"},
    },
)
@limiter.limit(AUTH_RATE_LIMIT)
async def google_login(request: Request, body: GoogleAuthBody, sessions: Sessions) -> TokenResponse:
    return _token_response(await sessions.oauth_login("google", body.access_token))


@router.post(
    "/apple",
    response_model=TokenResponse,
    summary="Sign in or sign up with an Apple ID token",
    responses={
        401: {"description": "Apple verification failed"},
        404: {"description": "Apple sign-in not enabled"},
    },
)
@limiter.limit(AUTH_RATE_LIMIT)
async def apple_login(request: Request, body: AppleAuthBody, sessions: Sessions) -> TokenResponse:
    result = await sessions.oauth_login(
        "apple",
        body.id_token,
        first_name=body.first_name or "",
        last_name=body.last_name or "",
    )
    return _token_response(result)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={401: {"description": "Refresh token invalid, expired or already used"}},
)
async def refresh_tokens(body: RefreshBody, sessions: Sessions) -> TokenResponse:
    """Exchange refresh_token for a new pair (rotation: the old refresh token stops working)."""
    return _token_response(await sessions.refresh(body.refresh_token))


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
        404: {"description": "User no longer exists"},
    },
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return UserOut.model_validate(user)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out on all devices",
    responses={401: {"description": "Not authenticated"}},
)
async def logout(
    claims: Annotated[AccessTokenClaims, Depends(get_current_claims)],
    sessions: Sessions,
) -> MessageResponse:
    await sessions.logout(claims.sub)
    return MessageResponse(message="Logged out.")


@router.delete(
    "/account",
    response_model=MessageResponse,
    summary="Delete the current account",
    responses={
        401: {"description": "Not authenticated or wrong password"},
        404: {"description": "User no longer exists"},
    },
)
async def delete_account(
    request: Request,
    claims: Annotated[AccessTokenClaims, Depends(get_current_claims)],
    sessions: Sessions,
    body: DeleteAccountBody | None = None,
) -> MessageResponse:
    await sessions.delete_account(
        claims.sub, body.password if body else None, ip_address=get_remote_address(request)
    )
    return MessageResponse(message="Account deleted.")
