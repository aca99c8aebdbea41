"""
Identity adapters. Sign-in itself happens at the managed auth provider; the
app only receives a one-time code on /auth/callback and trades it for the
user's id, e-mail and display name.
"""

from abc import ABC, abstractmethod
from typing import Optional
from dataclasses import dataclass
import base64
import hashlib
import hmac
import json
import logging
import os
import uuid

import httpx

from .helpers import now_ts

logger = logging.getLogger(__name__)

BACKEND = os.getenv("AUTH_BACKEND", "mock").lower()  # 'mock' | 'remote'
AUTH_URL = os.environ.get("AUTH_URL", "")
AUTH_ANON_KEY = os.environ.get("AUTH_ANON_KEY", "")
MOCK_AUTH_SECRET = os.environ.get("MOCK_AUTH_SECRET", "supersecret")
MOCK_CODE_TTL_SECONDS = 10 * 60


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    full_name: Optional[str] = None


class AuthFailed(Exception):
    pass


# ----------------------------
# Identity Adapter Interface
# ----------------------------
class IdentityAdapter(ABC):
    @abstractmethod
    async def exchange_code(self, code: str) -> Identity: ...


# ----------------------------
# Mock provider: HMAC-signed codes
# ----------------------------
def _sign(payload: bytes) -> str:
    mac = hmac.new(MOCK_AUTH_SECRET.encode(), payload, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(mac).decode().rstrip("=")


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def mint_code(email: str, full_name: Optional[str] = None,
              user_id: Optional[str] = None) -> str:
    """Issue a code the way the provider's hosted login page would."""
    body = json.dumps({
        "sub": user_id or uuid.uuid5(uuid.NAMESPACE_URL, email.lower()).hex,
        "email": email.lower(),
        "name": full_name,
        "iat": int(now_ts()),
    }).encode()
    return f"{_b64(body)}.{_sign(body)}"


class MockIdentity(IdentityAdapter):
    async def exchange_code(self, code: str) -> Identity:
        try:
            body_b64, sig = code.split(".", 1)
            body = _unb64(body_b64)
        except ValueError:
            raise AuthFailed("malformed code")
        if not hmac.compare_digest(_sign(body), sig):
            raise AuthFailed("invalid signature")
        try:
            claims = json.loads(body)
        except ValueError:
            raise AuthFailed("invalid code payload")
        if now_ts() - claims.get("iat", 0) > MOCK_CODE_TTL_SECONDS:
            raise AuthFailed("code expired")
        return Identity(
            id=claims["sub"], email=claims["email"],
            full_name=claims.get("name"),
        )


# ----------------------------
# Managed auth service (PKCE code exchange over REST)
# ----------------------------
class RemoteIdentity(IdentityAdapter):
    def __init__(self, http: httpx.AsyncClient,
                 base_url: str = AUTH_URL, anon_key: str = AUTH_ANON_KEY):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    async def exchange_code(self, code: str) -> Identity:
        try:
            r = await self.http.post(
                f"{self.base_url}/auth/v1/token",
                params={"grant_type": "pkce"},
                json={"auth_code": code},
                headers={"apikey": self.anon_key},
            )
        except httpx.HTTPError as e:
            logger.error("[Auth] code exchange failed: %s", e)
            raise AuthFailed("auth service unreachable")
        if r.status_code != 200:
            raise AuthFailed(f"code exchange rejected ({r.status_code})")
        user = r.json().get("user") or {}
        if not user.get("id") or not user.get("email"):
            raise AuthFailed("auth service returned no user")
        meta = user.get("user_metadata") or {}
        return Identity(
            id=user["id"],
            email=user["email"].lower(),
            full_name=meta.get("full_name") or meta.get("name"),
        )


def new_adapter(http: Optional[httpx.AsyncClient] = None) -> IdentityAdapter:
    if BACKEND == "remote":
        if http is None:
            raise RuntimeError("RemoteIdentity requires http=httpx.AsyncClient")
        return RemoteIdentity(http)
    return MockIdentity()
