"""
OAuth identity verification: Google (opaque access token -> userinfo) and
Apple (signed ID token checked against Apple's JWKS).

Each verifier returns a VerifiedIdentity or None. Every failure mode (transport
error, bad status, bad signature, wrong audience, expired, missing email) gives
None; the reason is only logged.
"""
from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
from jose import jwk
from jose.exceptions import JOSEError
from jose.utils import base64url_decode

from raceup_api.core.tokens import Clock, utcnow
from raceup_api.services.http_client import get_http_client

logger = logging.getLogger(__name__)

GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"
APPLE_ISSUER = "https://appleid.apple.com"


@dataclass(frozen=True)
class VerifiedIdentity:
    provider: str
    subject: str
    email: str
    email_verified: bool = False
    first_name: str = ""
    last_name: str = ""


class IdentityVerifier(ABC):
    provider: str

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    @abstractmethod
    async def verify(self, assertion: str, first_name: str = "", last_name: str = "") -> VerifiedIdentity | None:
        """Verify a provider assertion. Never raises for a rejected assertion."""


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class GoogleVerifier(IdentityVerifier):
    provider = "google"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        userinfo_url: str = GOOGLE_USERINFO_URL,
    ):
        super().__init__(client, timeout)
        self._userinfo_url = userinfo_url

    async def verify(self, assertion: str, first_name: str = "", last_name: str = "") -> VerifiedIdentity | None:
        try:
            r = await self.client.get(
                self._userinfo_url,
                headers={"Authorization": f"Bearer {assertion}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Google userinfo request failed: %s", type(e).__name__)
            return None
        if r.status_code != 200:
            logger.info("Google userinfo rejected token: status=%s", r.status_code)
            return None
        try:
            data = r.json()
        except ValueError:
            logger.warning("Google userinfo returned non-JSON body")
            return None
        if not isinstance(data, dict) or not data.get("email"):
            logger.info("Google userinfo response has no email")
            return None
        return VerifiedIdentity(
            provider=self.provider,
            subject=str(data.get("sub") or ""),
            email=str(data["email"]),
            email_verified=_as_bool(data.get("email_verified", False)),
            first_name=str(data.get("given_name") or first_name or ""),
            last_name=str(data.get("family_name") or last_name or ""),
        )


def _b64_json(segment: str) -> Any:
    return json.loads(base64url_decode(segment.encode("ascii")))


class AppleVerifier(IdentityVerifier):
    """Verify Apple ID tokens (RS256) against Apple's rotating public keys.

    The key set is cached for ``keys_cache_seconds``. An unknown ``kid`` forces
    one refetch so a freshly rotated key is picked up.
    """

    provider = "apple"

    def __init__(
        self,
        client_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        keys_url: str = APPLE_KEYS_URL,
        issuer: str = APPLE_ISSUER,
        keys_cache_seconds: int = 3600,
        clock: Clock = utcnow,
    ):
        super().__init__(client, timeout)
        self._client_id = client_id
        self._keys_url = keys_url
        self._issuer = issuer
        self._keys_cache_seconds = keys_cache_seconds
        self._clock = clock
        self._keys: list[dict[str, Any]] = []
        self._keys_fetched_at = 0.0

    async def _fetch_keys(self) -> list[dict[str, Any]] | None:
        try:
            r = await self.client.get(self._keys_url, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.warning("Apple JWKS request failed: %s", type(e).__name__)
            return None
        if r.status_code != 200:
            logger.warning("Apple JWKS request returned status=%s", r.status_code)
            return None
        try:
            keys = r.json().get("keys")
        except (ValueError, AttributeError):
            logger.warning("Apple JWKS response is not a key set")
            return None
        if not isinstance(keys, list):
            return None
        self._keys = [k for k in keys if isinstance(k, dict)]
        self._keys_fetched_at = time.monotonic()
        return self._keys

    def _cached_key(self, kid: str) -> dict[str, Any] | None:
        if not self._keys or time.monotonic() - self._keys_fetched_at > self._keys_cache_seconds:
            return None
        return next((k for k in self._keys if k.get("kid") == kid), None)

    async def _find_key(self, kid: str) -> dict[str, Any] | None:
        key = self._cached_key(kid)
        if key is not None:
            return key
        keys = await self._fetch_keys()
        if keys is None:
            return None
        return next((k for k in keys if k.get("kid") == kid), None)

    async def verify(self, assertion: str, first_name: str = "", last_name: str = "") -> VerifiedIdentity | None:
        parts = assertion.split(".")
        if len(parts) != 3:
            logger.info("Apple token rejected: malformed structure")
            return None
        header_b64, payload_b64, signature_b64 = parts

        try:
            header = _b64_json(header_b64)
        except (ValueError, UnicodeError):
            logger.info("Apple token rejected: undecodable header")
            return None
        if not isinstance(header, dict) or header.get("alg") != "RS256" or not header.get("kid"):
            logger.info("Apple token rejected: unsupported header")
            return None

        key_data = await self._find_key(str(header["kid"]))
        if key_data is None:
            logger.info("Apple token rejected: unknown kid")
            return None

        try:
            public_key = jwk.construct(key_data, algorithm="RS256")
            signature = base64url_decode(signature_b64.encode("ascii"))
            valid = public_key.verify(f"{header_b64}.{payload_b64}".encode("ascii"), signature)
        except (JOSEError, ValueError, TypeError, UnicodeError):
            logger.warning("Apple token rejected: key import or signature check failed")
            return None
        if not valid:
            logger.info("Apple token rejected: bad signature")
            return None

        try:
            payload = _b64_json(payload_b64)
        except (ValueError, UnicodeError):
            logger.info("Apple token rejected: undecodable payload")
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self._issuer:
            logger.info("Apple token rejected: issuer mismatch")
            return None
        if payload.get("aud") != self._client_id:
            logger.info("Apple token rejected: audience mismatch")
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            logger.info("Apple token rejected: expired")
            return None
        if not payload.get("email"):
            logger.info("Apple token rejected: no email claim")
            return None

        return VerifiedIdentity(
            provider=self.provider,
            subject=str(payload.get("sub") or ""),
            email=str(payload["email"]),
            email_verified=_as_bool(payload.get("email_verified", False)),
            # Apple sends the user's name only on first sign-in, via the client
            first_name=first_name or "",
            last_name=last_name or "",
        )
