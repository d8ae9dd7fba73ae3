"""Entry point for the FileMaker Data API MCP server."""

import logging
import sys

import uvicorn

from fmda_mcp.config import Settings, settings
from fmda_mcp.server import build_app, build_auth, build_mcp

logger = logging.getLogger("fmda_mcp")


def main(cfg: Settings = settings) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    errors = cfg.validate()
    if errors:
        for error in errors:
            logger.error("Configuration error: %s", error)
        sys.exit(1)

    logger.info("Starting FileMaker Data API MCP server: %s", cfg.describe())
    mcp = build_mcp(build_auth(cfg))

    if cfg.transport == "stdio":
        mcp.run()
        return

    ssl_options = {}
    if cfg.transport == "https":
        ssl_options = {"ssl_certfile": cfg.cert_path, "ssl_keyfile": cfg.key_path}
    uvicorn.run(build_app(mcp, cfg.transport), host=cfg.host, port=cfg.port, **ssl_options)


if __name__ == "__main__":
    main()
