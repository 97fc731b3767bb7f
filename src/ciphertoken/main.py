"""Main entry point - runs the event poller and the control API."""

import argparse
import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from ciphertoken.api.app import create_app
from ciphertoken.config import Settings, get_settings
from ciphertoken.services.factory import Services, build_services, register_handlers

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that runs the poller and the API."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.services: Optional[Services] = None
        self._shutdown_event = asyncio.Event()

    def _build(self) -> Services:
        services = build_services(self.settings)
        register_handlers(services)
        self.services = services
        return services

    async def start(self):
        """Start all services and wait for a shutdown signal."""
        logger.info("Starting CipherToken...")
        logger.info(f"Environment: {self.settings.environment}, network: {self.settings.network_name}")

        services = self._build()
        tasks = [asyncio.create_task(self._run_api(services))]
        logger.info("API task created")

        if self.settings.auto_start and self.settings.has_credentials:
            try:
                await services.poller.start()
            except Exception as e:
                logger.error(f"Event poller failed to start: {e} - use POST /start to retry")
        elif not self.settings.has_credentials:
            logger.warning("CONTRACT_ID or SOURCE_SECRET_KEY not set - poller not started")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        services.poller.stop()
        await services.poller.wait_closed()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Shutdown complete")

    async def run_once(self) -> int:
        """Run a single poll over the lookback window and return."""
        services = self._build()
        dispatched = await services.poller.poll_once()
        logger.info(f"Single poll finished: {dispatched} events dispatched")
        return dispatched

    async def _run_api(self, services: Services):
        """Run the FastAPI server."""
        try:
            app = create_app(services)
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ciphertoken",
        description="Encrypted balance reconciliation server",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="run a single poll over the lookback window and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        if args.once:
            loop.run_until_complete(Application(settings).run_once())
            return

        app = Application(settings)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, app.shutdown)
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
