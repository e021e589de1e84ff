"""Command line interface for running the API server with its background workers."""
import asyncio
import logging
import os
import signal

import uvicorn

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

server = None


class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    def stop(self):
        """Stop the server."""
        self.server.should_exit = True


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received. Cleaning up...")
    if server:
        server.stop()


async def main():
    """Run the API server; the app lifespan starts the sweep and payout workers."""
    global server

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    server = UvicornServer(
        host=os.environ.get('MARKET_HOST', '0.0.0.0'),
        port=int(os.environ.get('MARKET_PORT', '8000'))
    )
    try:
        await server.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    logger.info("Cleanup complete.")


if __name__ == "__main__":
    asyncio.run(main())
