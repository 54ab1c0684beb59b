"""Anniversary site entry point."""

import asyncio
import logging

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Start the web server and run until cancelled."""
    from src.backend import get_backend
    from src.web.context import build_context
    from src.web.server import WebServer

    server = WebServer(build_context(get_backend()))
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    logger.info("Starting anniversary site (backend=%s)...", settings.backend)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
