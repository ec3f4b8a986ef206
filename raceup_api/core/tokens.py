"""Access tokens (HS256 JWT) and opaque refresh-token secrets."""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from raceup_api.core.errors import TokenInvalid

ALGORITHM = "HS256"
REFRESH_SECRET_BYTES = 64

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessTokenClaims:
    sub: str
    email: str
    username: str
    iat: int
    exp: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "email": self.email,
            "username": self.username,
            "iat": self.iat,
            "exp": self.exp,
        }


class TokenCodec:
    """Issues and verifies access tokens; generates and hashes refresh secrets.

    The clock and random source are injected so issuance and expiry are
    deterministic under test.
    """

    def __init__(
        self,
        secret: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Clock = utcnow,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock
        self._random_bytes = random_bytes

    def _now_ts(self) -> int:
        return int(self._clock().timestamp())

    def issue_access_token(self, user_id: str, email: str, username: str) -> str:
        now = self._now_ts()
        claims = AccessTokenClaims(
            sub=str(user_id),
            email=email,
            username=username,
            iat=now,
            exp=now + self.access_ttl_seconds,
        )
        return jwt.encode(claims.as_dict(), self._secret, algorithm=ALGORITHM)

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Return the embedded claims or raise TokenInvalid."""
        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise TokenInvalid() from e
        try:
            claims = AccessTokenClaims(
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                username=str(payload.get("username") or ""),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenInvalid() from e
        if claims.exp <= self._now_ts():
            raise TokenInvalid()
        return claims

    def issue_refresh_secret(self) -> str:
        """128 hex chars; returned to the client once and never stored."""
        return self._random_bytes(REFRESH_SECRET_BYTES).hex()

    @staticmethod
    def hash_refresh_secret(secret: str) -> str:
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def refresh_expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.refresh_ttl_seconds)
