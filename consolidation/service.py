"""
Consolidation Service.

This module drives a consolidator: it serializes observations and time scans
onto a single consolidator, scans the wall clock periodically so bars close
even when no data arrives at the close, and keeps a rolling history of
consolidated bars.
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging

from config import Settings, get_settings
from consolidation.aggregators import QuoteBarAggregator, TradeBarAggregator
from consolidation.consolidator import ZonedTimeOfDayConsolidator
from consolidation.models import BarConsolidated, ConsolidatedBar

logger = logging.getLogger(__name__)


def build_consolidator(settings: Optional[Settings] = None) -> ZonedTimeOfDayConsolidator:
    """
    Create a consolidator from settings.

    Args:
        settings: Settings to use (global settings if not specified)

    Returns:
        Configured consolidator
    """
    settings = settings or get_settings()
    aggregator = TradeBarAggregator() if settings.bar_type == "trade" else QuoteBarAggregator()
    return ZonedTimeOfDayConsolidator(
        daily_close_time=settings.daily_close_time,
        close_time_zone=settings.close_time_zone,
        exchange_time_zone=settings.exchange_time_zone,
        aggregator=aggregator,
        emit_tolerance=timedelta(seconds=settings.emit_tolerance_seconds),
        trigger_time=settings.trigger_time
    )


class ConsolidationService:
    """
    Serializes access to a consolidator and runs its periodic time scan.

    Attributes:
        consolidator: The driven consolidator
        _history: Consolidated bars (oldest to newest)
        _lock: Threading lock serializing calls into the consolidator
    """

    def __init__(
        self,
        consolidator: Optional[ZonedTimeOfDayConsolidator] = None,
        history_size: Optional[int] = None,
        scan_interval: Optional[float] = None
    ):
        """
        Initialize the service.

        Args:
            consolidator: Consolidator to drive (built from settings if not specified)
            history_size: Maximum number of consolidated bars to retain
            scan_interval: Seconds between time scans
        """
        self.settings = get_settings()
        self.consolidator = consolidator or build_consolidator(self.settings)
        self._history_size = history_size or self.settings.history_size
        self._scan_interval = scan_interval or self.settings.scan_interval_seconds

        self._history: List[ConsolidatedBar] = []
        self._lock = threading.RLock()
        self._running = False
        self._scan_task: Optional[asyncio.Task] = None

        self.consolidator.subscribe(self._on_bar_consolidated)

    def _on_bar_consolidated(self, event: BarConsolidated) -> None:
        self._history.append(event.bar)
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]

    def exchange_now(self) -> datetime:
        """Get the current wall-clock time in the exchange timezone (naive)."""
        return self.consolidator.schedule.to_exchange_local(datetime.now(timezone.utc))

    def process(self, data: ConsolidatedBar) -> Optional[ConsolidatedBar]:
        """
        Feed an observation to the consolidator.

        Args:
            data: Observation stamped in exchange local time

        Returns:
            The consolidated bar if one closed, None otherwise
        """
        with self._lock:
            return self.consolidator.update(data)

    def scan(self, current_local_time: Optional[datetime] = None) -> Optional[ConsolidatedBar]:
        """
        Scan the consolidator for a close due to time passing.

        Args:
            current_local_time: Exchange-local time to probe (wall clock if not specified)

        Returns:
            The consolidated bar if one closed, None otherwise
        """
        with self._lock:
            if current_local_time is None:
                current_local_time = self.exchange_now()
            return self.consolidator.scan(current_local_time)

    async def _scan_loop(self) -> None:
        """Background task scanning the consolidator at a fixed interval."""
        while self._running:
            try:
                await asyncio.sleep(self._scan_interval)

                if not self._running:
                    break

                self.scan()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in consolidation scan loop: {e}")
                await asyncio.sleep(1)

    async def start(self) -> None:
        """Start the periodic time scan."""
        if self._running:
            return

        self._running = True
        self._scan_task = asyncio.create_task(self._scan_loop())
        logger.info(f"Consolidation service started ({self.consolidator.schedule!r})")

    async def stop(self) -> None:
        """Stop the periodic time scan; the working bar stays open."""
        self._running = False

        if self._scan_task:
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass
            self._scan_task = None

        logger.info("Consolidation service stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_working_bar(self) -> Optional[ConsolidatedBar]:
        """Get a snapshot of the bar currently being consolidated."""
        with self._lock:
            return self.consolidator.working_data

    def get_history(self, limit: Optional[int] = None) -> List[ConsolidatedBar]:
        """
        Get the consolidated bar history.

        Args:
            limit: Maximum number of bars to return (most recent)

        Returns:
            List of consolidated bars (oldest to newest)
        """
        with self._lock:
            if limit:
                return self._history[-limit:]
            return list(self._history)

    def next_close(self) -> datetime:
        """Get the next close in exchange local time."""
        schedule = self.consolidator.schedule
        return schedule.to_exchange_local(schedule.next_close_after(datetime.now(timezone.utc)))
