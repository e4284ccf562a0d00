"""
Zoned Time-of-Day Consolidator.

This module consolidates incoming bars into one bar per day, closing at a
fixed time of day in a chosen timezone while the data itself is stamped in
the exchange timezone.

A bar is closed either by an observation whose end lands on the close, or by
a scan of the current time when no data arrives at the close.
"""

from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, List, Optional, Type, Union
import logging

from consolidation.aggregators import BarAggregator, QuoteBarAggregator
from consolidation.models import BarConsolidated, ConsolidatedBar
from consolidation.schedule import EMIT_TOLERANCE, DailyCloseSchedule, inexact_compare

logger = logging.getLogger(__name__)

Listener = Callable[[BarConsolidated], None]


class TriggerTime(str, Enum):
    """Which timestamp of an observation is matched against the close."""
    START = "start"
    END = "end"


class ZonedTimeOfDayConsolidator:
    """
    Consolidates data at a single time of day only, in a desired timezone.

    At most one working bar exists at a time. It is created by the first
    observation after the previous close and handed to listeners, then
    forgotten, once a close is crossed.

    Calls must be serialized by the caller; the consolidator holds no locks.

    Attributes:
        schedule: The daily close schedule
        emit_tolerance: Slack allowed when matching a timestamp against a close
        trigger_time: Observation timestamp matched against the close
    """

    def __init__(
        self,
        daily_close_time: Union[time, timedelta],
        close_time_zone: str = "UTC",
        exchange_time_zone: str = "America/New_York",
        aggregator: Optional[BarAggregator] = None,
        emit_tolerance: timedelta = EMIT_TOLERANCE,
        trigger_time: Union[TriggerTime, str] = TriggerTime.END
    ):
        """
        Initialize the consolidator.

        Args:
            daily_close_time: Time of day (close timezone) to emit a consolidated bar
            close_time_zone: Timezone identifier the close time is expressed in
            exchange_time_zone: Timezone identifier of the exchange
            aggregator: Aggregation strategy (quote bar range merge if not specified)
            emit_tolerance: Slack allowed when matching a timestamp against a close
            trigger_time: Observation timestamp matched against the close

        Raises:
            UnknownTimezoneError: If either zone identifier is unknown
        """
        self.schedule = DailyCloseSchedule(daily_close_time, close_time_zone, exchange_time_zone)
        self.emit_tolerance = emit_tolerance
        self.trigger_time = TriggerTime(trigger_time)

        self._aggregator = aggregator or QuoteBarAggregator()
        self._working_bar: Optional[ConsolidatedBar] = None
        self._last_emit: Optional[datetime] = None
        self._listeners: List[Listener] = []

    @property
    def input_type(self) -> Type:
        return self._aggregator.input_type

    @property
    def output_type(self) -> Type:
        return self._aggregator.output_type

    @property
    def working_data(self) -> Optional[ConsolidatedBar]:
        """Get a clone of the bar currently being consolidated."""
        return self._working_bar.clone() if self._working_bar is not None else None

    @property
    def last_emit_time(self) -> Optional[datetime]:
        """Exchange-local close of the last emitted bar, None if none emitted yet."""
        return self._last_emit

    def subscribe(self, listener: Listener) -> None:
        """
        Add a listener to be called when a bar is consolidated.

        Args:
            listener: Function to call with each consolidation event
        """
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """
        Remove a listener.

        Args:
            listener: Function to remove from listeners
        """
        if listener in self._listeners:
            self._listeners.remove(listener)

    def update(self, data: ConsolidatedBar) -> Optional[ConsolidatedBar]:
        """
        Process a new observation.

        Observations older than the last close are not aggregated.

        Args:
            data: Observation stamped in exchange local time

        Returns:
            The consolidated bar if this observation closed one, None otherwise
        """
        if self._last_emit is None or data.time >= self._last_emit:
            if self._working_bar is None:
                start_time = self.schedule.period_start(data.time)
                logger.debug(f"Started new {data.symbol} daily bar at {start_time}")
            else:
                start_time = self._working_bar.time
            self._working_bar = self._aggregator.fold(self._working_bar, data, start_time)

        if self._working_bar is None:
            return None

        return self._consolidate_if_due(self._trigger_local_time(data))

    def scan(self, current_local_time: datetime) -> Optional[ConsolidatedBar]:
        """
        Check whether a bar should be emitted due to time passing.

        Args:
            current_local_time: The current time (exchange timezone, naive)

        Returns:
            The consolidated bar if the close was reached, None otherwise
        """
        if self._working_bar is None:
            return None
        return self._consolidate_if_due(current_local_time)

    def _trigger_local_time(self, data: ConsolidatedBar) -> datetime:
        if self.trigger_time is TriggerTime.END and data.end_time is not None:
            return data.end_time
        return data.time

    def _consolidate_if_due(self, local_time: datetime) -> Optional[ConsolidatedBar]:
        zoned_time = self.schedule.localize_exchange(local_time)
        zoned_working_time = self.schedule.localize_exchange(self._working_bar.time)

        # The last time we should have emitted at, with respect to the trigger time
        should_have_emitted_at = self.schedule.last_close_at_or_before(zoned_time)

        # Emit when the trigger sits on the close and the close is after the bar began
        if (inexact_compare(zoned_time, should_have_emitted_at, self.emit_tolerance) != 0 or
                inexact_compare(should_have_emitted_at, zoned_working_time, self.emit_tolerance) <= 0):
            return None

        bar = self._working_bar
        bar.end_time = self.schedule.to_exchange_local(should_have_emitted_at)

        self._last_emit = bar.end_time
        self._working_bar = None

        self._on_data_consolidated(BarConsolidated(bar=bar, close_time_utc=should_have_emitted_at))
        return bar

    def _on_data_consolidated(self, event: BarConsolidated) -> None:
        bar = event.bar
        logger.info(
            f"Consolidated {bar.symbol} daily bar {bar.time} -> {bar.end_time} "
            f"value={bar.value} period={bar.period}"
        )

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Error in consolidation listener {listener!r}")
