"""Application entry point."""

import asyncio
import logging
import signal
import sys

from guied.billing.server import build_app, run_server
from guied.config import get_config
from guied.db import close_pool, get_pool
from guied.db.schema import migrate

logger = logging.getLogger(__name__)


async def serve(shutdown_event: asyncio.Event) -> None:
    """
    Boot sequence: load config → initialize pool → migrate → serve → shutdown.

    Raises:
        SystemExit: On configuration or database errors during boot
    """
    try:
        config = get_config()
        logger.info(f"Configuration loaded: env={config.env}")

        pool = await get_pool()
        applied = await migrate(pool)
        logger.info(f"Schema up to date ({applied} migration(s) applied)")
    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        await close_pool()
        raise SystemExit(1) from e

    try:
        app = build_app(pool, config)
        await run_server(app, config.server_host, config.server_port, shutdown_event)
    finally:
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Main entry point with logging configuration.

    Blocks until SIGTERM/SIGINT is received.
    """
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        loop.run_until_complete(serve(shutdown_event))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except SystemExit:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)
    finally:
        loop.close()


if __name__ == "__main__":
    main()
