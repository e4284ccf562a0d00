"""
Aggregation Strategies for Daily Bars.

An aggregator folds one observation into the working bar of the current day.
The consolidator owns the working bar and decides when it closes; aggregators
only decide what the bar contains.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Type

from consolidation.models import ConsolidatedBar, QuoteBar, TradeBar


class BarAggregator(ABC):
    """
    Abstract base class for aggregation strategies.

    Subclasses implement starting a new working bar and merging an
    observation into an existing one. ``fold`` never mutates its arguments.
    """

    input_type: Type = object
    output_type: Type = object

    def fold(self, working: Optional[ConsolidatedBar], data: ConsolidatedBar,
             start_time: datetime) -> ConsolidatedBar:
        """
        Fold an observation into the working bar.

        Args:
            working: The bar being built, None if no bar is in progress
            data: The new observation
            start_time: Start of the daily period, used when a new bar begins

        Returns:
            A new bar that includes the observation
        """
        if working is None:
            bar = self.start(data, start_time)
        else:
            bar = working.clone()
        self.merge(bar, data)
        return bar

    @abstractmethod
    def start(self, data: ConsolidatedBar, start_time: datetime) -> ConsolidatedBar:
        """
        Create a new working bar from the first observation of a period.

        Args:
            data: The first observation
            start_time: Start of the daily period (exchange timezone, naive)

        Returns:
            New bar sharing no mutable state with ``data``
        """
        pass

    @abstractmethod
    def merge(self, bar: ConsolidatedBar, data: ConsolidatedBar) -> None:
        """
        Merge an observation into a bar owned by the caller.

        Args:
            bar: Bar to update in place
            data: The new observation
        """
        pass


class QuoteBarAggregator(BarAggregator):
    """
    Merges bid/ask open-high-low-close ranges of quote bars.

    Sides missing from an observation leave the bar's side untouched; the
    pass-through value is overwritten and periods accumulate.
    """

    input_type = QuoteBar
    output_type = QuoteBar

    def start(self, data: QuoteBar, start_time: datetime) -> QuoteBar:
        return QuoteBar(
            symbol=data.symbol,
            time=start_time,
            bid=data.bid.clone() if data.bid else None,
            ask=data.ask.clone() if data.ask else None
        )

    def merge(self, bar: QuoteBar, data: QuoteBar) -> None:
        if data.bid is not None:
            bar.last_bid_size = data.last_bid_size
            if bar.bid is None:
                bar.bid = data.bid.clone()
            else:
                bar.bid.update(data.bid)

        if data.ask is not None:
            bar.last_ask_size = data.last_ask_size
            if bar.ask is None:
                bar.ask = data.ask.clone()
            else:
                bar.ask.update(data.ask)

        bar.value = data.value
        bar.period += data.period


class TradeBarAggregator(BarAggregator):
    """Merges trade bars into a daily OHLCV bar."""

    input_type = TradeBar
    output_type = TradeBar

    def start(self, data: TradeBar, start_time: datetime) -> TradeBar:
        return TradeBar(
            symbol=data.symbol,
            time=start_time,
            open=data.open,
            high=data.high,
            low=data.low,
            close=data.close
        )

    def merge(self, bar: TradeBar, data: TradeBar) -> None:
        bar.high = max(bar.high, data.high)
        bar.low = min(bar.low, data.low)
        bar.close = data.close
        bar.volume += data.volume
        bar.period += data.period
