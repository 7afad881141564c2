"""Base service class that handles boilerplate setup.

Subclasses get settings, a bound logger, a shutdown event and graceful
SIGTERM/SIGINT handling.

Usage:
    import asyncio
    from shared.service import BaseService

    class MyService(BaseService):
        name = "my-service"

        async def run(self) -> None:
            self.logger.info("working")
            await self.wait_for_shutdown()

    if __name__ == "__main__":
        asyncio.run(MyService().start())
"""

from __future__ import annotations

import asyncio
import signal
import time

from shared.config import Settings
from shared.log import get_logger


class BaseService:
    """Base class for long-running asyncio services."""

    name: str = "unnamed-service"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.logger = get_logger(self.name)
        self._shutdown_event = asyncio.Event()
        self._start_time: float = time.monotonic()

    async def run(self) -> None:
        """Override this method with your service logic."""
        raise NotImplementedError("Subclasses must implement run()")

    async def start(self) -> None:
        """Start the service with graceful shutdown handling."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        self.logger.info("service_starting", service=self.name)

        try:
            await self.run()
        except asyncio.CancelledError:
            self.logger.info("service_cancelled")
        finally:
            await self.shutdown()

    def _handle_shutdown(self) -> None:
        self.logger.info("shutdown_signal_received")
        self._shutdown_event.set()

    async def close(self) -> None:
        """Override to release clients (HTTP sessions, schedulers)."""

    async def shutdown(self) -> None:
        """Clean up resources."""
        self.logger.info("service_shutting_down")
        await self.close()
        self.logger.info(
            "service_stopped",
            uptime_seconds=round(time.monotonic() - self._start_time, 1),
        )

    async def wait_for_shutdown(self) -> None:
        """Await this in your run() to block until shutdown signal."""
        await self._shutdown_event.wait()
