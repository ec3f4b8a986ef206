"""Pytest configuration and shared fixtures for API tests."""

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB and secrets before app imports so config/engine use them
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_raceup.db")
os.environ.setdefault("JWT_SECRET", "test-secret-key-0123456789abcdef0123")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("GOOGLE_CLIENT_ID", "google-test-client")
os.environ.setdefault("APPLE_CLIENT_ID", "net.raceup.test")

from raceup_api.api.deps import get_identity_verifiers, get_token_codec
from raceup_api.core.passwords import hash_password
from raceup_api.db.base import Base
from raceup_api.db.session import async_session_maker, engine
from raceup_api.main import app
from raceup_api.models.user import User
from raceup_api.services.oauth import IdentityVerifier, VerifiedIdentity

TEST_PASSWORD = "Password123"


class StubVerifier(IdentityVerifier):
    """Accepts only the assertions registered in ``identities``."""

    def __init__(self, provider: str, identities: dict[str, VerifiedIdentity] | None = None):
        super().__init__()
        self.provider = provider
        self.identities = identities or {}
        self.calls: list[str] = []

    async def verify(self, assertion, first_name="", last_name=""):
        self.calls.append(assertion)
        identity = self.identities.get(assertion)
        if identity is None:
            return None
        return VerifiedIdentity(
            provider=identity.provider,
            subject=identity.subject,
            email=identity.email,
            email_verified=identity.email_verified,
            first_name=identity.first_name or first_name,
            last_name=identity.last_name or last_name,
        )


@pytest_asyncio.fixture
async def clean_db():
    """Recreate all tables so each test starts from an empty database."""
    import raceup_api.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
def verifiers():
    return {
        "google": StubVerifier(
            "google",
            {"good-google-token": VerifiedIdentity("google", "g-1", "Runner.One@Gmail.com", True, "Ann", "Runner")},
        ),
        "apple": StubVerifier(
            "apple",
            {"good-apple-token": VerifiedIdentity("apple", "a-1", "apple.user@privaterelay.appleid.com", True)},
        ),
    }


@pytest_asyncio.fixture
async def client(clean_db, verifiers):
    """AsyncClient against the app with OAuth providers stubbed."""
    app.dependency_overrides[get_identity_verifiers] = lambda: verifiers
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(email: str, username: str, role: str = "user", password: str | None = TEST_PASSWORD, provider: str = "email") -> User:
    async with async_session_maker() as session:
        user = User(
            email=email,
            username=username,
            password_hash=hash_password(password) if password else None,
            first_name="Test",
            last_name="User",
            auth_provider=provider,
            role=role,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


def _bearer(user: User) -> dict:
    token = get_token_codec().issue_access_token(user.id, user.email, user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Password user committed to the DB."""
    return await _create_user("test@example.com", "tester")


@pytest.fixture
def auth_headers(test_user):
    return _bearer(test_user)


@pytest_asyncio.fixture
async def admin_headers(clean_db):
    return _bearer(await _create_user("admin@example.com", "admin_one", role="admin"))


@pytest_asyncio.fixture
async def super_admin_headers(clean_db):
    return _bearer(await _create_user("root@example.com", "root_one", role="super_admin"))


@pytest_asyncio.fixture
async def oauth_user(clean_db):
    """Google-only account without a password."""
    return await _create_user("oauth@example.com", "oauth_only", password=None, provider="google")


@pytest.fixture
def bearer():
    """Build an Authorization header for any user object."""
    return _bearer
