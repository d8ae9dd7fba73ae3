import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from .errors import CorruptStateError, DuplicateConnectionError, NotFoundError, ValidationError
from .storage import read_json, write_json

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "vLatest"
CONNECTIONS_FILENAME = "connections.json"


@dataclass(frozen=True)
class ConnectionProfile:
    """Server/database/credentials for one FileMaker database.

    Frozen, so a profile handed to an in-flight call cannot change under it.
    `name` is None for inline (session-only) connections.
    """

    server: str
    database: str
    user: str
    password: str = field(repr=False)
    version: Optional[str] = DEFAULT_VERSION
    name: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, str, str]:
        """(server, database, user) triple used as the token cache key."""
        return (self.server, self.database, self.user)

    @property
    def base_url(self) -> str:
        return f"https://{self.server}/fmi/data/{self.version or DEFAULT_VERSION}"

    def database_url(self, *parts: Any) -> str:
        """URL under /databases/{database}, each path part percent-encoded."""
        segments = [self.database, *parts]
        return f"{self.base_url}/databases/" + "/".join(quote(str(part), safe="") for part in segments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "server": self.server,
            "version": self.version,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }

    def masked(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["password"] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: Optional[str] = None) -> "ConnectionProfile":
        return cls(
            server=data.get("server") or "",
            database=data.get("database") or "",
            user=data.get("user") or "",
            password=data.get("password") or "",
            version=data.get("version", DEFAULT_VERSION),
            name=name if name is not None else data.get("name"),
        )


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str]


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def _document(connections: Dict[str, ConnectionProfile], default_name: Optional[str]) -> Dict[str, Any]:
    return {
        "connections": {name: profile.to_dict() for name, profile in connections.items()},
        "defaultConnection": default_name,
    }


class ConnectionRegistry:
    """Named connection profiles, the current connection and the default pointer.

    Named profiles and the default pointer live in ``connections.json``; the
    current connection is session state and is never written to disk. Every
    mutation validates first and persists last, so a failed call leaves the
    file untouched.
    """

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        self.connections_file = self.config_dir / CONNECTIONS_FILENAME
        self._connections: Dict[str, ConnectionProfile] = {}
        self._default_name: Optional[str] = None
        self._current: Optional[ConnectionProfile] = None
        self._load()

    def _load(self) -> None:
        try:
            data = read_json(self.connections_file)
        except CorruptStateError as exc:
            logger.warning("Ignoring unreadable connections file: %s", exc)
            return
        if data is None:
            logger.debug("No connections file at %s, starting empty", self.connections_file)
            return

        self._connections = self._valid_entries(data.get("connections"))
        self._default_name = self._resolve_default(data.get("defaultConnection"), self._connections)
        logger.info("Loaded %d connection(s) from %s", len(self._connections), self.connections_file)

    def _valid_entries(self, raw: Any) -> Dict[str, ConnectionProfile]:
        """Profiles from a persisted/imported mapping; entries that fail validation are skipped."""
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("Ignoring connections that are not a JSON object")
            return {}
        entries: Dict[str, ConnectionProfile] = {}
        for name, entry in raw.items():
            if not isinstance(entry, dict) or _blank(name):
                logger.warning('Skipping malformed connection "%s"', name)
                continue
            profile = ConnectionProfile.from_dict(entry, name=name)
            result = self.validate(profile)
            if result.valid:
                entries[name] = profile
            else:
                logger.warning('Skipping connection "%s": %s', name, ", ".join(result.errors))
        return entries

    @staticmethod
    def _resolve_default(default_name: Any, connections: Dict[str, ConnectionProfile]) -> Optional[str]:
        if default_name is None:
            return None
        if not isinstance(default_name, str):
            logger.warning("Ignoring default connection of type %s", type(default_name).__name__)
            return None
        if default_name not in connections:
            logger.warning('Default connection "%s" does not exist, ignoring it', default_name)
            return None
        return default_name

    def _persist(self, connections: Dict[str, ConnectionProfile], default_name: Optional[str]) -> None:
        """Write the new state, then adopt it; a failed write leaves memory as it was."""
        write_json(self.connections_file, _document(connections, default_name))
        self._connections = connections
        self._default_name = default_name

    def validate(self, profile: ConnectionProfile) -> ValidationResult:
        errors: List[str] = []
        if _blank(profile.server):
            errors.append("Server is required")
        if _blank(profile.database):
            errors.append("Database is required")
        if _blank(profile.user):
            errors.append("User is required")
        if _blank(profile.password):
            errors.append("Password is required")
        if profile.version is not None and _blank(profile.version):
            errors.append("Version must be a valid string")
        return ValidationResult(valid=not errors, errors=errors)

    def _require(self, name: str) -> ConnectionProfile:
        profile = self._connections.get(name)
        if profile is None:
            raise NotFoundError(f'Connection "{name}" not found')
        return profile

    def add(self, name: str, profile: ConnectionProfile) -> ConnectionProfile:
        if _blank(name):
            raise ValidationError(["Connection name is required"])
        if name in self._connections:
            raise DuplicateConnectionError(name)
        result = self.validate(profile)
        if not result.valid:
            raise ValidationError(result.errors)

        named = replace(profile, name=name)
        self._persist({**self._connections, name: named}, self._default_name)
        logger.info('Connection "%s" added: %s@%s', name, named.database, named.server)
        return named

    def remove(self, name: str) -> None:
        self._require(name)
        remaining = {key: profile for key, profile in self._connections.items() if key != name}
        self._persist(remaining, None if self._default_name == name else self._default_name)
        if self._current is not None and self._current.name == name:
            self._current = None
        logger.info('Connection "%s" removed', name)

    def switch_to(self, name: str) -> ConnectionProfile:
        profile = self._require(name)
        self._current = profile
        logger.info("Switched to connection: %s (%s@%s)", name, profile.database, profile.server)
        return profile

    def set_current_inline(self, profile: ConnectionProfile) -> ConnectionProfile:
        result = self.validate(profile)
        if not result.valid:
            raise ValidationError(result.errors)
        self._current = profile
        logger.info("Using inline connection: %s@%s", profile.database, profile.server)
        return profile

    def clear_current(self) -> None:
        self._current = None

    def get_current(self) -> Optional[ConnectionProfile]:
        return self._current

    def set_default(self, name: str) -> None:
        self._require(name)
        self._persist(self._connections, name)

    @property
    def default_name(self) -> Optional[str]:
        return self._default_name

    def get_default(self) -> Optional[ConnectionProfile]:
        if not self._default_name:
            return None
        return self._connections.get(self._default_name)

    def initialize_with_default(self) -> Optional[ConnectionProfile]:
        """Make the default connection current unless something is current already."""
        if self._current is None:
            default = self.get_default()
            if default is not None:
                self._current = default
                logger.info('Using default connection "%s"', default.name)
        return self._current

    def get(self, name: str) -> Optional[ConnectionProfile]:
        return self._connections.get(name)

    def get_masked(self, name: str) -> Optional[Dict[str, Any]]:
        profile = self._connections.get(name)
        return profile.masked() if profile else None

    def list_connections(self) -> List[ConnectionProfile]:
        return list(self._connections.values())

    def names(self) -> List[str]:
        return list(self._connections)

    def exists(self, name: str) -> bool:
        return name in self._connections

    @property
    def count(self) -> int:
        return len(self._connections)

    def export(self) -> Dict[str, Any]:
        return _document(self._connections, self._default_name)

    def import_connections(self, data: Dict[str, Any]) -> int:
        """Replace all named connections with `data` (export() shape); returns how many were kept."""
        imported = self._valid_entries(data.get("connections"))
        default_name = self._resolve_default(data.get("defaultConnection"), imported)
        self._persist(imported, default_name)
        if self._current is not None and self._current.name and self._current.name not in imported:
            self._current = None
        return len(imported)
