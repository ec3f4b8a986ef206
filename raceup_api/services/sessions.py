"""
Session orchestration: register, login, OAuth login, refresh rotation, logout,
account deletion and role changes.

Flows raise AuthError subclasses (see core/errors.py); the API layer maps them
to status codes. Password derivation runs in the thread pool so the event loop
is not blocked for the PBKDF2 rounds.
"""
from __future__ import annotations

import logging
import re
import secrets
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date

from starlette.concurrency import run_in_threadpool

from raceup_api.core.errors import (
    DuplicateIdentity,
    Forbidden,
    InvalidCredentials,
    InvalidPassword,
    OAuthAccountConflict,
    OAuthProviderUnavailable,
    OAuthVerificationFailed,
    RefreshTokenInvalid,
    UsernameAllocationError,
    UserNotFound,
)
from raceup_api.core.passwords import PBKDF2_ITERATIONS, dummy_hash, hash_password, verify_password
from raceup_api.core.tokens import Clock, TokenCodec, utcnow
from raceup_api.models.user import PROVIDER_EMAIL, ROLE_SUPER_ADMIN, ROLE_USER, User
from raceup_api.models.audit_log import ACTION_ACCOUNT_DELETED, ACTION_ROLE_CHANGED
from raceup_api.services.auth_store import AuthStore
from raceup_api.services.oauth import IdentityVerifier, VerifiedIdentity

logger = logging.getLogger(__name__)

USERNAME_PREFIX_MAX = 20
_USERNAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9_-]")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: str
    expires_in: int  # seconds until access token expires


class SessionOrchestrator:
    def __init__(
        self,
        store: AuthStore,
        codec: TokenCodec,
        verifiers: Mapping[str, IdentityVerifier] | None = None,
        clock: Clock = utcnow,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        password_iterations: int = PBKDF2_ITERATIONS,
        username_max_attempts: int = 10,
    ):
        self.store = store
        self.codec = codec
        self.verifiers = dict(verifiers or {})
        self._clock = clock
        self._random_bytes = random_bytes
        self._password_iterations = password_iterations
        self._username_max_attempts = username_max_attempts

    async def _hash_password(self, password: str) -> str:
        return await run_in_threadpool(hash_password, password, self._password_iterations, self._random_bytes)

    async def _verify_password(self, password: str, stored_hash: str) -> bool:
        return await run_in_threadpool(verify_password, password, stored_hash)

    async def _issue_tokens(self, user: User) -> AuthResult:
        """Create access token and a refresh token (stored by hash only)."""
        now = self._clock()
        access = self.codec.issue_access_token(user.id, user.email, user.username)
        refresh = self.codec.issue_refresh_secret()
        await self.store.save_refresh_token(
            user.id,
            self.codec.hash_refresh_secret(refresh),
            self.codec.refresh_expires_at(now),
        )
        return AuthResult(user=user, access_token=access, refresh_token=refresh, expires_in=self.codec.access_ttl_seconds)

    async def register(
        self,
        email: str,
        password: str,
        username: str,
        first_name: str = "",
        last_name: str = "",
        birth_date: date | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        if await self.store.get_user_by_email(email) is not None:
            raise DuplicateIdentity.email()
        if await self.store.get_user_by_username(username) is not None:
            raise DuplicateIdentity.username()
        now = self._clock()
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            username=username,
            password_hash=await self._hash_password(password),
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            auth_provider=PROVIDER_EMAIL,
            role=ROLE_USER,
            created_at=now,
            updated_at=now,
        )
        user = await self.store.add_user(user)
        logger.info("Registered user %s", user.id)
        return await self._issue_tokens(user)

    async def login(self, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        user = await self.store.get_user_by_email(email)
        if user is None:
            # Same PBKDF2 cost as a real check so timing does not reveal the email
            await self._verify_password(password, dummy_hash(self._password_iterations))
            raise InvalidCredentials()
        if not user.password_hash:
            raise OAuthAccountConflict(user.auth_provider)
        if not await self._verify_password(password, user.password_hash):
            logger.info("Login failed for user %s: wrong password", user.id)
            raise InvalidCredentials()
        removed = await self.store.delete_expired_refresh_tokens(self._clock(), user_id=user.id)
        if removed:
            logger.debug("Removed %d expired refresh tokens for user %s", removed, user.id)
        return await self._issue_tokens(user)

    async def oauth_login(
        self,
        provider: str,
        assertion: str,
        first_name: str = "",
        last_name: str = "",
    ) -> AuthResult:
        verifier = self.verifiers.get(provider)
        if verifier is None:
            raise OAuthProviderUnavailable(provider)
        identity = await verifier.verify(assertion, first_name=first_name, last_name=last_name)
        if identity is None:
            raise OAuthVerificationFailed(provider)
        user = await self._find_or_create_oauth_user(identity)
        return await self._issue_tokens(user)

    async def _allocate_username(self, email: str) -> str:
        prefix = _USERNAME_DISALLOWED.sub("_", email.split("@", 1)[0])[:USERNAME_PREFIX_MAX]
        for _ in range(self._username_max_attempts):
            candidate = f"{prefix}_{self._random_bytes(2).hex()}"
            if await self.store.get_user_by_username(candidate) is None:
                return candidate
        raise UsernameAllocationError(
            f"No free username for prefix {prefix!r} after {self._username_max_attempts} attempts"
        )

    async def _find_or_create_oauth_user(self, identity: VerifiedIdentity) -> User:
        email = normalize_email(identity.email)
        existing = await self.store.get_user_by_email(email)
        if existing is not None:
            return existing
        now = self._clock()
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            username=await self._allocate_username(email),
            password_hash=None,
            first_name=identity.first_name[:50],
            last_name=identity.last_name[:50],
            auth_provider=identity.provider,
            role=ROLE_USER,
            created_at=now,
            updated_at=now,
        )
        try:
            user = await self.store.add_user(user)
        except DuplicateIdentity as e:
            # A concurrent first login for the same email won the insert
            if e.code == "EMAIL_ALREADY_EXISTS":
                existing = await self.store.get_user_by_email(email)
                if existing is not None:
                    return existing
            raise
        logger.info("Created %s user %s", identity.provider, user.id)
        return user

    async def refresh(self, refresh_token: str) -> AuthResult:
        """Single-use rotation: the presented token is deleted before new ones are issued."""
        token = (refresh_token or "").strip()
        if not token:
            raise RefreshTokenInvalid()
        user_id = await self.store.consume_refresh_token(self.codec.hash_refresh_secret(token), self._clock())
        if user_id is None:
            raise RefreshTokenInvalid()
        user = await self.store.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound(status_code=401)
        return await self._issue_tokens(user)

    async def logout(self, user_id: str) -> int:
        """Delete every refresh token of the user (log out on all devices)."""
        removed = await self.store.delete_user_refresh_tokens(user_id)
        logger.info("User %s logged out, %d refresh tokens removed", user_id, removed)
        return removed

    async def get_user(self, user_id: str) -> User:
        user = await self.store.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def delete_account(self, user_id: str, password: str | None = None, ip_address: str | None = None) -> None:
        user = await self.get_user(user_id)
        # OAuth-only accounts have no password; the access token is the proof
        if user.password_hash:
            if not password or not await self._verify_password(password, user.password_hash):
                raise InvalidPassword()
        await self.store.record_audit(
            user.id,
            ACTION_ACCOUNT_DELETED,
            "user",
            user.id,
            {"auth_provider": user.auth_provider},
            ip_address=ip_address,
        )
        await self.store.delete_user(user.id)
        logger.info("Deleted account %s", user.id)

    async def change_role(self, actor: User, user_id: str, role: str, ip_address: str | None = None) -> User:
        if actor.role != ROLE_SUPER_ADMIN:
            raise Forbidden("Super administrator access required.")
        user = await self.store.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if user.role == ROLE_SUPER_ADMIN:
            raise Forbidden("Super administrator roles cannot be changed.")
        previous = user.role
        user = await self.store.set_role(user, role)
        await self.store.record_audit(
            actor.id, ACTION_ROLE_CHANGED, "user", user.id, {"from": previous, "to": role}, ip_address=ip_address
        )
        return user

    async def sweep_expired_refresh_tokens(self) -> int:
        return await self.store.delete_expired_refresh_tokens(self._clock())
