from __future__ import annotations

import json
from dataclasses import replace
from datetime import timedelta

import httpx
import pytest

from fmda_mcp.auth import AuthManager
from fmda_mcp.connection import ConnectionRegistry
from fmda_mcp.errors import FileMakerAPIError, NoActiveConnectionError, NotFoundError, UnauthorizedError
from fmda_mcp.http_client import HttpClient
from fmda_mcp.session import TokenCache


class _FakeDataAPI:
    """Answers session requests and records what was sent."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []
        self.issued = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/sessions"):
            if self.status != 200:
                return httpx.Response(
                    self.status,
                    json={"messages": [{"code": "212", "message": "Invalid user account and/or password"}]},
                )
            self.issued += 1
            token = f"T{self.issued}"
            return httpx.Response(
                200,
                headers={"X-FM-Data-Access-Token": token},
                json={"response": {"token": token}, "messages": [{"code": "0", "message": "OK"}]},
            )
        return httpx.Response(200, json={"response": {}, "messages": [{"code": "0", "message": "OK"}]})

    @property
    def logins(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST" and r.url.path.endswith("/sessions")]


@pytest.fixture
def api() -> _FakeDataAPI:
    return _FakeDataAPI()


@pytest.fixture
def auth(api: _FakeDataAPI, registry: ConnectionRegistry, tokens: TokenCache, prod_profile) -> AuthManager:
    registry.add("prod", prod_profile)
    registry.switch_to("prod")
    client = HttpClient(transport=httpx.MockTransport(api))
    return AuthManager(client, registry, tokens)


def _unauthorized() -> UnauthorizedError:
    return UnauthorizedError(401, "Invalid FileMaker Data API token (*)", code="952")


@pytest.mark.anyio
async def test_login_caches_token_from_header(auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache) -> None:
    token = await auth.login()

    assert token == "T1"
    assert tokens.get("10.0.0.1", "Sales", "admin") == "T1"
    request = api.logins[0]
    assert request.url.path == "/fmi/data/vLatest/databases/Sales/sessions"
    assert request.headers["Authorization"].startswith("Basic ")


@pytest.mark.anyio
async def test_login_reuses_cached_token(auth: AuthManager, api: _FakeDataAPI) -> None:
    await auth.login()
    await auth.login()

    assert len(api.logins) == 1


@pytest.mark.anyio
async def test_login_sends_external_databases(
    api: _FakeDataAPI, registry: ConnectionRegistry, tokens: TokenCache, prod_profile
) -> None:
    registry.set_current_inline(prod_profile)
    sources = [{"database": "Lookup", "username": "u", "password": "p"}]
    auth = AuthManager(HttpClient(transport=httpx.MockTransport(api)), registry, tokens, sources)

    await auth.login()

    assert json.loads(api.logins[0].content) == {"fmDataSource": sources}


@pytest.mark.anyio
async def test_failed_login_raises_without_caching(
    registry: ConnectionRegistry, tokens: TokenCache, prod_profile
) -> None:
    registry.set_current_inline(prod_profile)
    api = _FakeDataAPI(status=401)
    auth = AuthManager(HttpClient(transport=httpx.MockTransport(api)), registry, tokens)

    with pytest.raises(UnauthorizedError) as excinfo:
        await auth.login()

    assert excinfo.value.code == "212"
    assert tokens.stats().total_cached == 0


@pytest.mark.anyio
async def test_retry_stops_after_two_reauthentications(
    auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache
) -> None:
    tokens.cache("stale", "10.0.0.1", "Sales", "admin", ttl=timedelta(hours=1))
    raised: list[UnauthorizedError] = []
    seen_tokens: list[str] = []

    async def always_unauthorized(profile, token):
        seen_tokens.append(token)
        raised.append(_unauthorized())
        raise raised[-1]

    with pytest.raises(UnauthorizedError) as excinfo:
        await auth.run_with_auth_retry(always_unauthorized)

    assert len(api.logins) == AuthManager.MAX_RETRY_ATTEMPTS == 2
    assert seen_tokens == ["stale", "T1", "T2"]
    assert excinfo.value is raised[-1]


@pytest.mark.anyio
async def test_retry_succeeds_after_one_reauthentication(
    auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache
) -> None:
    tokens.cache("stale", "10.0.0.1", "Sales", "admin", ttl=timedelta(hours=1))

    async def operation(profile, token):
        if token == "stale":
            raise _unauthorized()
        return {"token": token}

    result = await auth.run_with_auth_retry(operation)

    assert result == {"token": "T1"}
    assert len(api.logins) == 1
    assert tokens.get("10.0.0.1", "Sales", "admin") == "T1"


@pytest.mark.anyio
async def test_other_errors_are_not_retried(auth: AuthManager, api: _FakeDataAPI) -> None:
    calls = 0

    async def operation(profile, token):
        nonlocal calls
        calls += 1
        raise FileMakerAPIError(500, "Record is missing", code="101")

    with pytest.raises(FileMakerAPIError) as excinfo:
        await auth.run_with_auth_retry(operation)

    assert not isinstance(excinfo.value, UnauthorizedError)
    assert calls == 1
    assert len(api.logins) == 1


@pytest.mark.anyio
async def test_profile_is_snapshotted_for_the_whole_call(
    auth: AuthManager, registry: ConnectionRegistry, prod_profile
) -> None:
    registry.add("staging", replace(prod_profile, server="10.0.0.2"))
    servers: list[str] = []

    async def operation(profile, token):
        servers.append(profile.server)
        if len(servers) == 1:
            registry.switch_to("staging")
            raise _unauthorized()
        return profile.server

    assert await auth.run_with_auth_retry(operation) == "10.0.0.1"
    assert servers == ["10.0.0.1", "10.0.0.1"]


@pytest.mark.anyio
async def test_no_active_connection(api: _FakeDataAPI, config_dir, clock) -> None:
    auth = AuthManager(
        HttpClient(transport=httpx.MockTransport(api)),
        ConnectionRegistry(config_dir),
        TokenCache(config_dir, clock=clock),
    )

    async def operation(profile, token):
        return None

    with pytest.raises(NoActiveConnectionError):
        await auth.run_with_auth_retry(operation)
    assert api.requests == []


@pytest.mark.anyio
async def test_database_override_gets_its_own_token(auth: AuthManager, tokens: TokenCache) -> None:
    profile = auth.active_profile("Inventory")

    await auth.login(profile)

    assert profile.database == "Inventory"
    assert auth.registry.get_current().database == "Sales"
    assert tokens.get("10.0.0.1", "Inventory", "admin") == "T1"
    assert tokens.get("10.0.0.1", "Sales", "admin") is None


@pytest.mark.anyio
async def test_logout_deletes_session_and_invalidates(
    auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache
) -> None:
    await auth.login()

    await auth.logout()

    delete = api.requests[-1]
    assert delete.method == "DELETE"
    assert delete.url.path == "/fmi/data/vLatest/databases/Sales/sessions/T1"
    assert tokens.get_info("10.0.0.1", "Sales", "admin") is None


@pytest.mark.anyio
async def test_logout_without_session(auth: AuthManager, api: _FakeDataAPI) -> None:
    with pytest.raises(NotFoundError):
        await auth.logout()
    assert api.requests == []


@pytest.mark.anyio
async def test_logout_inside_expiry_buffer_still_deletes(
    auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache
) -> None:
    tokens.cache("nearly-done", "10.0.0.1", "Sales", "admin", ttl=timedelta(minutes=2))

    await auth.logout()

    assert api.requests[-1].method == "DELETE"
    assert api.requests[-1].url.path.endswith("/sessions/nearly-done")
    assert tokens.get_info("10.0.0.1", "Sales", "admin") is None


@pytest.mark.anyio
async def test_logout_after_hard_expiry_drops_entry(
    auth: AuthManager, api: _FakeDataAPI, tokens: TokenCache, clock
) -> None:
    tokens.cache("stale", "10.0.0.1", "Sales", "admin", ttl=timedelta(minutes=1))
    clock.advance(61)

    with pytest.raises(NotFoundError):
        await auth.logout()

    assert api.requests == []
    assert tokens.stats().total_cached == 0
