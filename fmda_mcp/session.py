import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .errors import CorruptStateError
from .storage import read_json, remove_file, write_json

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=15)
EXPIRY_BUFFER = timedelta(minutes=5)
TOKENS_FILENAME = "tokens.json"


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def cache_key(server: str, database: str, user: str) -> str:
    return f"{server}:{database}:{user}"


@dataclass
class CachedToken:
    """Data API session token for one (server, database, user). Times are epoch ms."""

    token: str
    server: str
    database: str
    user: str
    expires_at: int
    created_at: int
    refresh_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "server": self.server,
            "database": self.database,
            "user": self.user,
            "expiresAt": self.expires_at,
            "createdAt": self.created_at,
            "refreshCount": self.refresh_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedToken":
        return cls(
            token=str(data["token"]),
            server=str(data["server"]),
            database=str(data["database"]),
            user=str(data["user"]),
            expires_at=int(data["expiresAt"]),
            created_at=int(data["createdAt"]),
            refresh_count=int(data.get("refreshCount", 0)),
        )


@dataclass(frozen=True)
class TokenInfo:
    """Loggable view of a cached token; deliberately has no token field."""

    server: str
    database: str
    user: str
    created_at: int
    expires_at: int
    expires_in: int
    refresh_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "server": self.server,
            "database": self.database,
            "user": self.user,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "expiresIn": self.expires_in,
            "refreshCount": self.refresh_count,
        }


@dataclass(frozen=True)
class TokenStats:
    total_cached: int
    valid_tokens: int
    expired_tokens: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class TokenCache:
    """Session tokens keyed by (server, database, user), persisted to tokens.json.

    `get` refuses to hand out a token inside EXPIRY_BUFFER of its expiry, so
    callers re-authenticate before the server starts rejecting it. Every
    mutation writes the whole file straight away.
    """

    def __init__(self, config_dir: Path, clock: Callable[[], float] = time.time):
        self.config_dir = Path(config_dir)
        self.tokens_file = self.config_dir / TOKENS_FILENAME
        self._clock = clock
        self._tokens: Dict[str, CachedToken] = {}
        self._load()

    def _now(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> None:
        try:
            data = read_json(self.tokens_file)
        except CorruptStateError as exc:
            logger.warning("Ignoring unreadable token cache: %s", exc)
            return
        if data is None:
            logger.debug("No token cache at %s, starting empty", self.tokens_file)
            return

        raw_tokens = data.get("tokens") or {}
        if isinstance(raw_tokens, dict):
            for key, entry in raw_tokens.items():
                try:
                    self._tokens[key] = CachedToken.from_dict(entry)
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping malformed token cache entry %s", key)
        logger.info("Loaded %d cached token(s)", len(self._tokens))
        self._drop_expired()

    def _drop_expired(self) -> None:
        now = self._now()
        expired = [key for key, entry in self._tokens.items() if entry.expires_at < now]
        for key in expired:
            del self._tokens[key]
            logger.debug("Removed expired token for %s", key)
        if expired:
            self._save()

    def _save(self) -> None:
        write_json(
            self.tokens_file,
            {
                "tokens": {key: entry.to_dict() for key, entry in self._tokens.items()},
                "lastSaved": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.debug("Saved %d token(s) to cache", len(self._tokens))

    def cache(
        self,
        token: str,
        server: str,
        database: str,
        user: str,
        ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        now = self._now()
        key = cache_key(server, database, user)
        self._tokens[key] = CachedToken(
            token=token,
            server=server,
            database=database,
            user=user,
            expires_at=now + _ms(ttl),
            created_at=now,
        )
        self._save()
        logger.info("Cached token for %s@%s (expires in %ds)", database, server, int(ttl.total_seconds()))

    def get(self, server: str, database: str, user: str) -> Optional[str]:
        key = cache_key(server, database, user)
        entry = self._tokens.get(key)
        if entry is None:
            return None

        now = self._now()
        if now > entry.expires_at:
            logger.debug("Cached token expired for %s", key)
            del self._tokens[key]
            self._save()
            return None
        if entry.expires_at - now < _ms(EXPIRY_BUFFER):
            logger.debug("Cached token for %s expires soon, needs refresh", key)
            return None
        return entry.token

    def peek(self, server: str, database: str, user: str) -> Optional[str]:
        """Token that the server should still accept, ignoring the expiry buffer."""
        entry = self._tokens.get(cache_key(server, database, user))
        if entry is None or self._now() > entry.expires_at:
            return None
        return entry.token

    def needs_refresh(self, server: str, database: str, user: str) -> bool:
        entry = self._tokens.get(cache_key(server, database, user))
        if entry is None:
            return False
        return entry.expires_at - self._now() < _ms(EXPIRY_BUFFER)

    def refresh(self, server: str, database: str, user: str, ttl: timedelta = DEFAULT_TTL) -> None:
        key = cache_key(server, database, user)
        entry = self._tokens.get(key)
        if entry is None:
            logger.debug("Cannot refresh: no cached token for %s", key)
            return
        entry.expires_at = self._now() + _ms(ttl)
        entry.refresh_count += 1
        self._save()
        logger.debug("Refreshed token for %s (refresh count: %d)", key, entry.refresh_count)

    def invalidate(self, server: str, database: str, user: str) -> None:
        key = cache_key(server, database, user)
        if self._tokens.pop(key, None) is not None:
            self._save()
            logger.info("Invalidated token for %s", key)

    def get_info(self, server: str, database: str, user: str) -> Optional[TokenInfo]:
        entry = self._tokens.get(cache_key(server, database, user))
        if entry is None:
            return None
        return TokenInfo(
            server=entry.server,
            database=entry.database,
            user=entry.user,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
            expires_in=max(0, entry.expires_at - self._now()),
            refresh_count=entry.refresh_count,
        )

    def stats(self) -> TokenStats:
        now = self._now()
        expired = sum(1 for entry in self._tokens.values() if entry.expires_at < now)
        return TokenStats(
            total_cached=len(self._tokens),
            valid_tokens=len(self._tokens) - expired,
            expired_tokens=expired,
        )

    def clear_all(self) -> None:
        self._tokens.clear()
        remove_file(self.tokens_file)
        logger.info("Cleared all cached tokens")
