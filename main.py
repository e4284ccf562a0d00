"""
Daily Bar Consolidator - Main Application.

This is the main entry point for the consolidator service. It builds the
consolidator from settings, starts the periodic time scan, and serves the
REST API.

Components:
- ZonedTimeOfDayConsolidator: Closes one bar per day at a zoned time of day
- ConsolidationService: Serializes calls and scans the wall clock
- REST API: FastAPI server for feeding observations and reading bars
"""

import asyncio
import signal
import sys
import logging

import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from config import get_settings
from consolidation.models import BarConsolidated
from consolidation.service import ConsolidationService
from api.rest_api import create_app

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


class ConsolidatorApp:
    """
    Main application class for the consolidator service.

    Coordinates the service and API server and manages the application lifecycle.
    """

    def __init__(self):
        """Initialize the application components."""
        self.settings = get_settings()

        self.service = ConsolidationService()
        self.app = create_app(self.service)

        self.service.consolidator.subscribe(self._on_bar_consolidated)

        # Shutdown flag
        self._shutdown = False

        logger.info("Daily bar consolidator initialized")

    def _on_bar_consolidated(self, event: BarConsolidated):
        """Log each consolidated bar."""
        logger.info(f"Daily bar closed at {event.close_time_utc.isoformat()}: {event.bar.to_json()}")

    async def start(self):
        """Start all components."""
        schedule = self.service.consolidator.schedule

        logger.info("=" * 60)
        logger.info("Starting Daily Bar Consolidator")
        logger.info("=" * 60)
        logger.info(f"Close: {schedule.daily_close_time.isoformat()} {schedule.close_time_zone.key}")
        logger.info(f"Exchange timezone: {schedule.exchange_time_zone.key}")
        logger.info(f"Bar type: {self.settings.bar_type}")
        logger.info(f"Next close (exchange): {self.service.next_close().isoformat()}")
        logger.info(f"REST API: http://{self.settings.api_host}:{self.settings.api_port}")
        logger.info("=" * 60)

        await self.service.start()

        config = uvicorn.Config(
            app=self.app,
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="info",
            access_log=False
        )
        server = uvicorn.Server(config)
        api_task = asyncio.create_task(server.serve())

        logger.info("Service started successfully!")
        logger.info("Press Ctrl+C to stop")

        # Wait for shutdown
        try:
            while not self._shutdown:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

        await self.stop()

        api_task.cancel()
        try:
            await api_task
        except asyncio.CancelledError:
            pass

    async def stop(self):
        """Stop all components."""
        logger.info("Shutting down...")

        await self.service.stop()

        working = self.service.get_working_bar()
        if working is not None:
            logger.info(f"Working bar left open since {working.time.isoformat()}")

        logger.info("Shutdown complete")

    def shutdown(self):
        """Signal shutdown."""
        self._shutdown = True


def main():
    """Main entry point."""
    consolidator_app = ConsolidatorApp()

    # Handle signals
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        consolidator_app.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(consolidator_app.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
