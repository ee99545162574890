"""
Entry point for the AI gateway.
"""

from __future__ import annotations

import asyncio
import logging

from ai_gateway.config import Configuration
from ai_gateway.llm.router import build_router
from ai_gateway.server import run_server

DEFAULT_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logging(logging_config: dict) -> None:
    logging.basicConfig(
        level=str(logging_config.get("level", "INFO")).upper(),
        format=logging_config.get("format", DEFAULT_LOG_FORMAT),
    )


async def serve() -> None:
    config = Configuration()
    setup_logging(config.get_logging_config())

    router = build_router(config)
    await run_server(router, config.get_server_config())


def main() -> None:
    """Console script entry point."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
