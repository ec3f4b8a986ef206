"""FastAPI dependencies: token codec, OAuth verifiers, session orchestrator, current user, admin guards."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from raceup_api.config import settings
from raceup_api.core.errors import Forbidden, TokenInvalid
from raceup_api.core.tokens import AccessTokenClaims, TokenCodec
from raceup_api.db.session import get_db
from raceup_api.models.user import User
from raceup_api.services.auth_store import SqlAuthStore
from raceup_api.services.oauth import AppleVerifier, GoogleVerifier, IdentityVerifier
from raceup_api.services.sessions import SessionOrchestrator


def get_token_codec() -> TokenCodec:
    return TokenCodec(
        settings.jwt_secret,
        access_ttl_seconds=settings.access_token_expire_seconds,
        refresh_ttl_seconds=settings.refresh_token_expire_seconds,
    )


@lru_cache(maxsize=1)
def _configured_verifiers() -> dict[str, IdentityVerifier]:
    # Built once per process so the Apple key cache survives between requests
    verifiers: dict[str, IdentityVerifier] = {}
    if settings.google_enabled:
        verifiers["google"] = GoogleVerifier(
            timeout=settings.oauth_request_timeout_seconds,
            userinfo_url=settings.google_userinfo_url,
        )
    if settings.apple_enabled:
        verifiers["apple"] = AppleVerifier(
            settings.apple_client_id,
            timeout=settings.oauth_request_timeout_seconds,
            keys_url=settings.apple_keys_url,
            issuer=settings.apple_issuer,
            keys_cache_seconds=settings.apple_keys_cache_seconds,
        )
    return verifiers


def get_identity_verifiers() -> dict[str, IdentityVerifier]:
    return _configured_verifiers()


def get_session_orchestrator(
    session: Annotated[AsyncSession, Depends(get_db)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    verifiers: Annotated[dict[str, IdentityVerifier], Depends(get_identity_verifiers)],
) -> SessionOrchestrator:
    return SessionOrchestrator(
        SqlAuthStore(session),
        codec,
        verifiers,
        password_iterations=settings.password_hash_iterations,
        username_max_attempts=settings.oauth_username_max_attempts,
    )


def get_current_claims(
    request: Request,
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> AccessTokenClaims:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise TokenInvalid("Missing authentication token.")
    token = auth_header[7:].strip()
    if not token:
        raise TokenInvalid("Missing authentication token.")
    return codec.verify_access_token(token)


async def get_current_user(
    claims: Annotated[AccessTokenClaims, Depends(get_current_claims)],
    sessions: Annotated[SessionOrchestrator, Depends(get_session_orchestrator)],
) -> User:
    return await sessions.get_user(claims.sub)


async def require_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Allow admin and super_admin. Raises 403 otherwise."""
    if not user.is_admin:
        raise Forbidden()
    return user
