import logging
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from .auth import AuthManager
from .config import Settings, settings
from .connection import ConnectionRegistry
from .connection_tools import register_connection_tools
from .http_client import HttpClient
from .session import TokenCache
from .tools import register_tools

logger = logging.getLogger(__name__)


def build_auth(cfg: Settings = settings) -> AuthManager:
    """Wire registry, token cache and HTTP client, and pick the startup connection."""
    registry = ConnectionRegistry(cfg.config_dir)
    tokens = TokenCache(cfg.config_dir)
    http_client = HttpClient(verify_ssl=cfg.verify_ssl, timeout=cfg.timeout)

    if registry.initialize_with_default() is None:
        env_profile = cfg.env_profile()
        if env_profile is not None:
            result = registry.validate(env_profile)
            if result.valid:
                registry.set_current_inline(env_profile)
            else:
                logger.warning("Ignoring FM_* connection settings: %s", ", ".join(result.errors))
    if registry.get_current() is None:
        logger.warning("No active connection; use fm_set_connection or fm_connect")

    return AuthManager(http_client, registry, tokens, cfg.external_databases)


def build_mcp(auth: AuthManager) -> FastMCP:
    mcp = FastMCP("FileMaker Data API MCP")
    register_connection_tools(mcp, auth.registry)
    register_tools(mcp, auth)
    return mcp


def build_app(mcp: FastMCP, transport: str = "http") -> Starlette:
    """Create the Starlette app serving the MCP streamable HTTP endpoint."""

    async def health(_request):
        return JSONResponse({"status": "ok", "transport": transport})

    @asynccontextmanager
    async def lifespan(_app: Starlette):
        async with mcp.session_manager.run():
            yield

    routes = [
        Route("/health", health),
        # FastMCP already exposes /mcp; mount at root to avoid /mcp/mcp and 307->404.
        Mount("/", app=mcp.streamable_http_app()),
    ]
    return Starlette(routes=routes, lifespan=lifespan)
