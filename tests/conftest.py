"""
Shared fixtures: an in-process fake backend and an in-memory keyring.
"""

import asyncio
import itertools
import time
from typing import Dict, List, Optional, Tuple

import keyring
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from jose import jwt
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from client.api_client import APIClient
from client.auth.credential_store import KeyringCredentialStore
from client.auth.session_manager import SessionManager
from shared.interfaces import CredentialKey

TEST_JWT_SECRET = "test-secret-key"
ACCESS_TOKEN_LIFETIME = 900

CREDENTIAL_KEY = CredentialKey("GPTToolkitMacApp", "refreshToken")


class InMemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found")


class FakeBackend:
    """
    Minimal GPT Toolkit backend.

    Issues JWT access tokens and rotating refresh tokens, records every call,
    and exposes knobs to expire tokens, fail refreshes and hold refreshes open.
    """

    def __init__(self):
        self.users: Dict[str, dict] = {}
        self.passwords: Dict[str, str] = {}
        self.access_tokens: Dict[str, str] = {}  # token -> user id
        self.refresh_tokens: Dict[str, str] = {}  # token -> user id
        self.wp_configs: Dict[str, dict] = {}
        self.site_urls: Dict[str, Optional[str]] = {}
        self.wp_authorized: Dict[str, bool] = {}
        self.last_generate_request: Optional[dict] = None

        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.unauthorized_count = 0
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_failure_status: Optional[int] = None
        self.refreshes_held = 0
        self.logout_failure_status: Optional[int] = None
        self._ids = itertools.count(1)

        self.app = web.Application(middlewares=[self._record_call])
        self.app.add_routes([
            web.post('/api/auth/login', self.login),
            web.post('/api/auth/register', self.register),
            web.get('/api/auth/me', self.me),
            web.post('/api/auth/refresh', self.refresh),
            web.post('/api/auth/logout', self.logout),
            web.get('/api/items', self.items),
            web.get('/api/always-401', self.always_unauthorized),
            web.get('/api/forbidden', self.forbidden),
            web.get('/api/empty', self.empty),
            web.get('/api/empty-object', self.empty_object),
            web.get('/api/not-json', self.not_json),
            web.get('/api/slow', self.slow),
            web.get('/api/wp/auth/start', self.wp_auth_start),
            web.get('/api/wp/auth/status', self.wp_auth_status),
            web.post('/api/wp/auth/revoke', self.wp_auth_revoke),
            web.get('/api/wp/site-url', self.wp_get_site_url),
            web.post('/api/wp/site-url', self.wp_set_site_url),
            web.get('/api/wp/config', self.wp_get_config),
            web.post('/api/wp/config', self.wp_set_config),
            web.post('/api/wp/generate', self.wp_generate),
        ])

    # -- helpers --------------------------------------------------------------

    @web.middleware
    async def _record_call(self, request, handler):
        self.calls.append((request.method, request.path[len('/api/'):], request.headers.get('Authorization')))
        return await handler(request)

    def call_count(self, path: str) -> int:
        return sum(1 for _, called_path, _ in self.calls if called_path == path)

    def add_user(self, email: str, password: str, name: str = "Test User", **extra) -> dict:
        user = {"id": f"user-{next(self._ids)}", "email": email, "name": name, **extra}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def issue_tokens(self, user_id: str) -> Tuple[str, str]:
        serial = next(self._ids)
        access_token = jwt.encode(
            {"sub": user_id, "jti": str(serial), "exp": int(time.time()) + ACCESS_TOKEN_LIFETIME},
            TEST_JWT_SECRET,
            algorithm="HS256"
        )
        refresh_token = f"refresh-{serial}"
        self.access_tokens[access_token] = user_id
        self.refresh_tokens[refresh_token] = user_id
        return access_token, refresh_token

    def expire_access_tokens(self) -> None:
        self.access_tokens.clear()

    def _user_by_id(self, user_id: str) -> dict:
        return next(user for user in self.users.values() if user["id"] == user_id)

    def _authorized_user_id(self, request) -> Optional[str]:
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return None
        return self.access_tokens.get(header[len('Bearer '):])

    def _unauthorized(self):
        self.unauthorized_count += 1
        return web.json_response({"message": "Token expired"}, status=401)

    # -- auth -----------------------------------------------------------------

    async def login(self, request):
        body = await request.json()
        email = body.get("email")
        if email not in self.users or self.passwords[email] != body.get("password"):
            return web.json_response({"message": "Invalid email or password"}, status=401)
        user = self.users[email]
        access_token, refresh_token = self.issue_tokens(user["id"])
        return web.json_response({"user": user, "accessToken": access_token, "refreshToken": refresh_token})

    async def register(self, request):
        body = await request.json()
        if body["email"] in self.users:
            return web.json_response({"errors": {"email": ["Email has already been taken"]}}, status=422)
        user = self.add_user(body["email"], body["password"], body["name"])
        access_token, refresh_token = self.issue_tokens(user["id"])
        return web.json_response({"user": user, "accessToken": access_token, "refreshToken": refresh_token})

    async def me(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        return web.json_response({"user": self._user_by_id(user_id)})

    async def _hold_refresh(self):
        if self.refresh_gate is not None:
            self.refreshes_held += 1
            await self.refresh_gate.wait()

    async def refresh(self, request):
        body = await request.json()
        if self.refresh_failure_status is not None:
            await self._hold_refresh()
            return web.json_response(
                {"errors": [{"detail": "Refresh token revoked"}]},
                status=self.refresh_failure_status
            )
        user_id = self.refresh_tokens.pop(body.get("refreshToken"), None)
        if user_id is None:
            return web.json_response({"errors": [{"detail": "Refresh token revoked"}]}, status=401)

        access_token, refresh_token = self.issue_tokens(user_id)
        await self._hold_refresh()
        return web.json_response({"accessToken": access_token, "refreshToken": refresh_token})

    async def logout(self, request):
        body = await request.json()
        if self.logout_failure_status is not None:
            return web.json_response({"message": "Logout unavailable"}, status=self.logout_failure_status)
        self.refresh_tokens.pop(body.get("refreshToken"), None)
        return web.Response(status=200)

    # -- generic --------------------------------------------------------------

    async def items(self, request):
        if self._authorized_user_id(request) is None:
            return self._unauthorized()
        return web.json_response({"items": [1, 2, 3]})

    async def always_unauthorized(self, request):
        return self._unauthorized()

    async def forbidden(self, request):
        return web.json_response({"message": "Not allowed"}, status=403)

    async def empty(self, request):
        return web.Response(status=200)

    async def empty_object(self, request):
        return web.json_response({})

    async def not_json(self, request):
        return web.Response(status=500, text="<html>Internal Server Error</html>")

    async def slow(self, request):
        await asyncio.sleep(0.5)
        return web.json_response({})

    # -- wordpress ------------------------------------------------------------

    async def wp_auth_start(self, request):
        if self._authorized_user_id(request) is None:
            return self._unauthorized()
        return web.json_response({"authUrl": "https://public-api.wordpress.com/oauth2/authorize?x=1", "state": "abc"})

    async def wp_auth_status(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        return web.json_response({"wpAuthStatus": self.wp_authorized.get(user_id, False)})

    async def wp_auth_revoke(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        self.wp_authorized[user_id] = False
        return web.Response(status=200)

    async def wp_get_site_url(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        return web.json_response({"siteUrl": self.site_urls.get(user_id)})

    async def wp_set_site_url(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        self.site_urls[user_id] = (await request.json())["siteUrl"]
        return web.Response(status=200)

    async def wp_get_config(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        if user_id not in self.wp_configs:
            return web.json_response({"message": "No configuration saved"}, status=404)
        return web.json_response(self.wp_configs[user_id])

    async def wp_set_config(self, request):
        user_id = self._authorized_user_id(request)
        if user_id is None:
            return self._unauthorized()
        self.wp_configs[user_id] = await request.json()
        return web.Response(status=200)

    async def wp_generate(self, request):
        if self._authorized_user_id(request) is None:
            return self._unauthorized()
        body = await request.json()
        self.last_generate_request = body
        return web.json_response({"generations": [
            {"title": f"About {body['prompt']}", "htmlContent": "<p>Hello</p>"},
        ]})


@pytest.fixture
def memory_keyring():
    """Install an in-memory keyring for the duration of a test."""
    previous = keyring.get_keyring()
    backend = InMemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def server(backend):
    test_server = TestServer(backend.app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest.fixture
def base_url(server):
    return str(server.make_url('/api/'))


@pytest_asyncio.fixture
async def api_client(base_url):
    client = APIClient(base_url, timeout=5.0)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def session_manager(api_client, memory_keyring):
    manager = SessionManager(api_client, KeyringCredentialStore(), CREDENTIAL_KEY)
    yield manager
    await manager.close()


@pytest.fixture
def stored_refresh_token(memory_keyring):
    """Read the refresh token currently persisted in the keyring."""
    def read() -> Optional[str]:
        return memory_keyring.passwords.get((CREDENTIAL_KEY.service, CREDENTIAL_KEY.account))
    return read
