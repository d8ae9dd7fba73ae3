import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from .connection import ConnectionProfile, ConnectionRegistry
from .errors import FileMakerAPIError, NoActiveConnectionError, NotFoundError, UnauthorizedError
from .http_client import HttpClient
from .session import DEFAULT_TTL, TokenCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[ConnectionProfile, str], Awaitable[T]]

TOKEN_HEADER = "X-FM-Data-Access-Token"


def _token_from_response(payload: Dict[str, Any], response: httpx.Response) -> str:
    token = response.headers.get(TOKEN_HEADER)
    if not token:
        token = ((payload or {}).get("response") or {}).get("token")
    if not token:
        raise FileMakerAPIError(
            response.status_code,
            "FileMaker login failed: session token missing in response.",
            payload=payload,
        )
    return token


class AuthManager:
    """Handles Data API login/logout and the retry-on-401 cycle.

    Tokens are cached per (server, database, user) in the TokenCache; the
    connection they belong to is always read from the ConnectionRegistry and
    snapshotted once per call.
    """

    MAX_RETRY_ATTEMPTS = 2

    def __init__(
        self,
        client: HttpClient,
        registry: ConnectionRegistry,
        tokens: TokenCache,
        external_databases: Optional[List[Dict[str, str]]] = None,
    ):
        self.client = client
        self.registry = registry
        self.tokens = tokens
        self.external_databases = list(external_databases or [])

    def active_profile(self, database: Optional[str] = None) -> ConnectionProfile:
        """Snapshot of the current connection, optionally pointed at another database."""
        profile = self.registry.get_current()
        if profile is None:
            raise NoActiveConnectionError()
        if database and database != profile.database:
            profile = replace(profile, database=database)
        return profile

    async def _authenticate(
        self,
        profile: ConnectionProfile,
        fm_data_source: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        url = profile.database_url("sessions")
        body: Dict[str, Any] = {}
        sources = fm_data_source if fm_data_source is not None else self.external_databases
        if sources:
            body["fmDataSource"] = sources
            logger.debug("Using %d external database(s)", len(sources))

        logger.info("Logging in to database: %s as user: %s", profile.database, profile.user)
        payload, response = await self.client.request(
            "POST",
            url,
            basic_auth=(profile.user, profile.password),
            json_body=body,
            capture_response=True,
        )
        token = _token_from_response(payload, response)
        self.tokens.cache(token, *profile.identity, ttl=DEFAULT_TTL)
        return token

    async def login(
        self,
        profile: Optional[ConnectionProfile] = None,
        fm_data_source: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        """Return a usable token for the profile, logging in only when the cache has none."""
        profile = profile or self.active_profile()
        cached = self.tokens.get(*profile.identity)
        if cached:
            logger.debug("Using cached token for %s@%s", profile.database, profile.server)
            return cached
        return await self._authenticate(profile, fm_data_source)

    async def logout(self, profile: Optional[ConnectionProfile] = None) -> Dict[str, Any]:
        profile = profile or self.active_profile()
        token = self.tokens.peek(*profile.identity)
        if not token:
            self.tokens.invalidate(*profile.identity)
            raise NotFoundError(f"No active session for {profile.database}@{profile.server}")

        url = profile.database_url("sessions", token)
        try:
            return await self.client.request("DELETE", url)
        finally:
            # The token is unusable whatever the server answered.
            self.tokens.invalidate(*profile.identity)
            logger.info("Logged out of %s@%s", profile.database, profile.server)

    async def run_with_auth_retry(
        self,
        operation: Operation,
        profile: Optional[ConnectionProfile] = None,
    ) -> T:
        """
        Run `operation(profile, token)` with a valid token:
        - the profile is snapshotted once, so switching connections mid-call has no effect
        - on a 401 the cached token is dropped, a fresh login is made and the call replayed
        - after MAX_RETRY_ATTEMPTS re-logins the original 401 error propagates
        """
        profile = profile or self.active_profile()
        token = await self.login(profile)
        attempt = 0
        while True:
            try:
                return await operation(profile, token)
            except UnauthorizedError:
                if attempt >= self.MAX_RETRY_ATTEMPTS:
                    raise
                attempt += 1
                logger.info(
                    "Received 401, re-authenticating (attempt %d/%d)",
                    attempt,
                    self.MAX_RETRY_ATTEMPTS,
                )
                self.tokens.invalidate(*profile.identity)
                token = await self._authenticate(profile)
