"""
Pytest configuration
Shared fixtures: JWT builder, fake identity service, in-memory storage.
"""

import asyncio
import base64
import json
import time
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from auth import AuthClient
from auth.models import TokenPair
from utils.kv_store import MemoryKeyValueStore

API_URL = "http://logware.test/api/v1"
EMAIL = "analyst@logware.io"
PASSWORD = "correct-horse-battery"

USER_DOC = {
    "_id": "64f1c0ffee",
    "email": EMAIL,
    "firstName": "Ada",
    "lastName": "Lovelace",
    "role": "analyst",
    "permissions": ["alerts:read", "reports:read"],
    "twoFactorEnabled": False,
    "lastLogin": "2024-05-01T08:00:00Z",
    "preferences": {
        "theme": "system",
        "notifications": {"email": True, "browser": False, "mobile": True},
        "language": "en-US",
    },
}


def _b64(data: Dict[str, Any]) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def make_jwt(expires_in: int = 900, **claims: Any) -> str:
    """Unsigned JWT with an ``exp`` claim ``expires_in`` seconds from now"""
    payload = {"sub": USER_DOC["_id"], "exp": int(time.time()) + expires_in, "jti": uuid.uuid4().hex}
    payload.update(claims)
    return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64(payload)}.signature"


class FakeIdentityServer:
    """In-process stand-in for the Logware identity service"""

    def __init__(self):
        self.password = PASSWORD
        self.require_mfa = False
        self.mfa_code = "123456"
        self.verification_id = "ver-1"
        self.access_ttl = 900
        self.opaque_tokens = False
        self.valid_access = set()
        self.valid_refresh = set()
        self.calls: Counter = Counter()
        self.requests: List[Tuple[str, str, Dict[str, Any], Optional[str]]] = []
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_fails = False
        self.logout_status = 200
        self.send_code_limited = False
        self.network_down = False
        self.lock_until: Optional[str] = None

    # Token bookkeeping

    def issue(self) -> Dict[str, str]:
        if self.opaque_tokens:
            access, refresh = f"opaque-{uuid.uuid4().hex}", f"opaque-{uuid.uuid4().hex}"
        else:
            access, refresh = make_jwt(self.access_ttl), make_jwt(86400, typ="refresh")
        self.valid_access.add(access)
        self.valid_refresh.add(refresh)
        return {"accessToken": access, "refreshToken": refresh}

    def issue_pair(self) -> TokenPair:
        tokens = self.issue()
        return TokenPair(tokens["accessToken"], tokens["refreshToken"])

    def expire_access_tokens(self):
        self.valid_access.clear()

    # Transport handler

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path.replace("/api/v1", "", 1)
        body = json.loads(request.content) if request.content else {}
        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else None
        self.calls[path] += 1
        self.requests.append((request.method, path, body, token))

        handler = getattr(self, "_" + path.strip("/").replace("/", "_").replace("-", "_"), None)
        if handler is None:
            return self._api(token)
        return await handler(request, body, token)

    async def _auth_login(self, request, body, token):
        if body.get("email") != EMAIL or body.get("password") != self.password:
            error = {"message": "Invalid email or password"}
            if self.lock_until:
                error = {"message": "Account locked", "lockUntil": self.lock_until}
            return httpx.Response(401, json=error)
        if self.require_mfa:
            return httpx.Response(200, json={
                "require2FA": True,
                "userId": USER_DOC["_id"],
                "verificationId": self.verification_id,
            })
        return httpx.Response(200, json={**self.issue(), "user": USER_DOC})

    async def _auth_verify_2fa(self, request, body, token):
        if body.get("verificationId") != self.verification_id:
            return httpx.Response(410, json={"message": "Verification session expired"})
        if body.get("code") != self.mfa_code:
            return httpx.Response(401, json={"message": "Two-factor authentication failed"})
        return httpx.Response(200, json={**self.issue(), "user": {**USER_DOC, "twoFactorEnabled": True}})

    async def _auth_mfa_send_code(self, request, body, token):
        if self.send_code_limited:
            return httpx.Response(
                429,
                json={"message": "Too many code requests. Please wait 30 seconds."},
                headers={"Retry-After": "30"},
            )
        self.verification_id = f"ver-{self.calls['/auth/mfa/send-code'] + 1}"
        return httpx.Response(200, json={"success": True, "verificationId": self.verification_id})

    async def _auth_refresh_token(self, request, body, token):
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        refresh_token = body.get("refreshToken")
        if self.refresh_fails or refresh_token not in self.valid_refresh:
            return httpx.Response(401, json={"message": "Invalid refresh token. Please login again."})
        self.valid_refresh.discard(refresh_token)
        return httpx.Response(200, json=self.issue())

    async def _auth_me(self, request, body, token):
        if token not in self.valid_access:
            return httpx.Response(401, json={"message": "Authentication failed. Please log in again."})
        return httpx.Response(200, json={"status": "success", "data": {"user": USER_DOC}})

    async def _auth_logout(self, request, body, token):
        if self.logout_status != 200:
            return httpx.Response(self.logout_status, json={"message": "Internal server error"})
        self.valid_refresh.discard(body.get("refreshToken"))
        return httpx.Response(200, json={"success": True})

    async def _auth_forgot_password(self, request, body, token):
        return httpx.Response(200, json={"message": "Password reset link sent to email"})

    async def _auth_change_password(self, request, body, token):
        if token not in self.valid_access:
            return httpx.Response(401, json={"message": "User recently changed password. Please log in again."})
        if body.get("currentPassword") != self.password:
            return httpx.Response(401, json={"message": "Your current password is incorrect"})
        self.password = body["newPassword"]
        return httpx.Response(200, json={**self.issue(), "user": USER_DOC})

    def _api(self, token):
        if token not in self.valid_access:
            return httpx.Response(401, json={"message": "Authentication failed. Please log in again."})
        return httpx.Response(200, json={"status": "success", "data": []})


async def wait_until(predicate, timeout: float = 2.0):
    """Yield to the event loop until ``predicate()`` holds"""
    async def poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def server() -> FakeIdentityServer:
    return FakeIdentityServer()


@pytest.fixture
def transport(server) -> httpx.MockTransport:
    return httpx.MockTransport(server.handle)


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def client(kv, transport):
    auth_client = AuthClient(API_URL, kv_store=kv, transport=transport, mfa_max_attempts=3)
    yield auth_client
    await auth_client.aclose()
