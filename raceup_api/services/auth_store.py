"""
Persistence for users and refresh tokens.

AuthStore is the interface the session orchestrator depends on; SqlAuthStore
implements it on an AsyncSession. Unique constraints on email/username make
duplicate registration race-safe, and refresh-token consumption is a single
conditional DELETE ... RETURNING so two concurrent refreshes with the same
secret cannot both succeed.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from raceup_api.core.errors import DuplicateIdentity
from raceup_api.models.audit_log import AuditLog
from raceup_api.models.refresh_token import RefreshToken
from raceup_api.models.user import User

logger = logging.getLogger(__name__)


class AuthStore(Protocol):
    async def get_user_by_id(self, user_id: str) -> User | None: ...

    async def get_user_by_email(self, email: str) -> User | None: ...

    async def get_user_by_username(self, username: str) -> User | None: ...

    async def add_user(self, user: User) -> User: ...

    async def delete_user(self, user_id: str) -> None: ...

    async def set_role(self, user: User, role: str) -> User: ...

    async def save_refresh_token(self, user_id: str, token_hash: str, expires_at: datetime) -> None: ...

    async def consume_refresh_token(self, token_hash: str, now: datetime) -> str | None: ...

    async def delete_user_refresh_tokens(self, user_id: str) -> int: ...

    async def delete_expired_refresh_tokens(self, now: datetime, user_id: str | None = None) -> int: ...

    async def record_audit(
        self,
        actor_id: str | None,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> None: ...


class SqlAuthStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_by_id(self, user_id: str) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        r = await self.session.execute(select(User).where(User.email == email))
        return r.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> User | None:
        r = await self.session.execute(select(User).where(User.username == username))
        return r.scalar_one_or_none()

    async def add_user(self, user: User) -> User:
        """Insert user. Raises DuplicateIdentity when email or username is taken."""
        try:
            async with self.session.begin_nested():
                self.session.add(user)
                await self.session.flush()
        except IntegrityError as e:
            logger.info("User insert hit unique constraint: %s", type(e.orig).__name__ if e.orig else e)
            if await self.get_user_by_email(user.email) is not None:
                raise DuplicateIdentity.email() from e
            raise DuplicateIdentity.username() from e
        return user

    async def delete_user(self, user_id: str) -> None:
        # Tokens are removed explicitly; not every backend enforces ON DELETE CASCADE
        await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id).execution_options(synchronize_session=False)
        )
        await self.session.execute(delete(User).where(User.id == user_id).execution_options(synchronize_session=False))
        await self.session.flush()

    async def set_role(self, user: User, role: str) -> User:
        user.role = role
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def save_refresh_token(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        self.session.add(RefreshToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at))
        await self.session.flush()

    async def consume_refresh_token(self, token_hash: str, now: datetime) -> str | None:
        """Delete the live token with this hash; return its owner or None if nothing was deleted."""
        r = await self.session.execute(
            delete(RefreshToken)
            .where(RefreshToken.token_hash == token_hash, RefreshToken.expires_at > now)
            .returning(RefreshToken.user_id)
            .execution_options(synchronize_session=False)
        )
        row = r.first()
        return row[0] if row else None

    async def delete_user_refresh_tokens(self, user_id: str) -> int:
        r = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id).execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def delete_expired_refresh_tokens(self, now: datetime, user_id: str | None = None) -> int:
        stmt = delete(RefreshToken).where(RefreshToken.expires_at <= now)
        if user_id is not None:
            stmt = stmt.where(RefreshToken.user_id == user_id)
        r = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return r.rowcount or 0

    async def record_audit(
        self,
        actor_id: str | None,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> None:
        self.session.add(
            AuditLog(
                user_id=actor_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                details=details,
                ip_address=ip_address,
            )
        )
        await self.session.flush()
        logger.info("audit: %s %s/%s by %s", action, resource, resource_id, actor_id or "system")

    async def list_users(self, q: str = "", page: int = 1, limit: int = 50) -> tuple[list[User], int]:
        """Page through users (newest first), optionally filtered by a search string."""
        conditions = []
        if q:
            pattern = f"%{q}%"
            conditions.append(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.email.ilike(pattern),
                    User.username.ilike(pattern),
                )
            )
        total_r = await self.session.execute(select(func.count(User.id)).where(*conditions))
        total = int(total_r.scalar_one())
        r = await self.session.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(r.scalars().all()), total
