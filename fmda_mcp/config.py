import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .connection import DEFAULT_VERSION, ConnectionProfile

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "http", "https")


def _default_config_dir() -> Path:
    return Path(os.getenv("FM_MCP_CONFIG_DIR", Path.home() / ".filemaker-mcp")).expanduser()


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def parse_external_databases(raw: Optional[str]) -> List[Dict[str, str]]:
    """Parse FM_EXTERNAL_DATABASES (JSON list of {database, username, password})."""
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse FM_EXTERNAL_DATABASES: %s", exc)
        return []
    if not isinstance(entries, list):
        logger.warning("FM_EXTERNAL_DATABASES must be a JSON list")
        return []

    valid: List[Dict[str, str]] = []
    for entry in entries:
        if isinstance(entry, dict) and all(entry.get(key) for key in ("database", "username", "password")):
            valid.append({key: str(entry[key]) for key in ("database", "username", "password")})
        else:
            db = entry.get("database") if isinstance(entry, dict) else entry
            logger.warning("Skipping invalid external database entry: %s", db)
    return valid


# Real environment variables win over both files.
load_dotenv(_default_config_dir() / ".env")
load_dotenv()


@dataclass
class Settings:
    """Centralised configuration for the MCP server and the FileMaker Data API."""

    config_dir: Path = field(default_factory=_default_config_dir)
    fm_server: str = os.getenv("FM_SERVER", "")
    fm_version: str = os.getenv("FM_VERSION", DEFAULT_VERSION)
    fm_database: str = os.getenv("FM_DATABASE", "")
    fm_user: str = os.getenv("FM_USER", "")
    fm_password: str = field(default=os.getenv("FM_PASSWORD", ""), repr=False)
    external_databases: List[Dict[str, str]] = field(
        default_factory=lambda: parse_external_databases(os.getenv("FM_EXTERNAL_DATABASES"))
    )
    verify_ssl: bool = _bool_env("FM_VERIFY_SSL", "false")
    timeout: float = float(os.getenv("FM_TIMEOUT", "30"))
    transport: str = os.getenv("MCP_TRANSPORT", "stdio")
    host: str = os.getenv("MCP_HOST", "localhost")
    port: int = int(os.getenv("MCP_PORT", "3000"))
    cert_path: Optional[str] = os.getenv("MCP_CERT_PATH") or None
    key_path: Optional[str] = os.getenv("MCP_KEY_PATH") or None
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def env_profile(self) -> Optional[ConnectionProfile]:
        """Inline connection described by the FM_* variables, if they are all set."""
        if not (self.fm_server and self.fm_database and self.fm_user and self.fm_password):
            return None
        return ConnectionProfile(
            server=self.fm_server,
            database=self.fm_database,
            user=self.fm_user,
            password=self.fm_password,
            version=self.fm_version or DEFAULT_VERSION,
        )

    def validate(self) -> List[str]:
        """Return transport configuration problems; empty when usable."""
        errors: List[str] = []
        if self.transport not in TRANSPORTS:
            errors.append(f"MCP_TRANSPORT must be one of {', '.join(TRANSPORTS)}")
        if self.transport != "stdio" and not 1 <= self.port <= 65535:
            errors.append("MCP_PORT must be between 1 and 65535")
        if self.transport == "https":
            if not self.cert_path:
                errors.append("MCP_CERT_PATH is required for HTTPS transport")
            elif not Path(self.cert_path).exists():
                errors.append(f"Certificate file not found: {self.cert_path}")
            if not self.key_path:
                errors.append("MCP_KEY_PATH is required for HTTPS transport")
            elif not Path(self.key_path).exists():
                errors.append(f"Key file not found: {self.key_path}")
        return errors

    def describe(self) -> Dict[str, Any]:
        return {
            "configDir": str(self.config_dir),
            "transport": self.transport,
            "host": self.host,
            "port": self.port,
            "server": self.fm_server,
            "database": self.fm_database,
            "externalDatabases": len(self.external_databases),
        }


settings = Settings()
