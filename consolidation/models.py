"""
Data Models for Daily Bar Consolidation.

This module defines the records flowing through the consolidator: the
bid/ask quote bars of the reference aggregation, plain trade bars, and the
notification delivered to listeners when a daily bar closes.

All ``time``/``end_time`` values are naive datetimes expressed in the
exchange timezone.
"""

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Union


@dataclass
class Bar:
    """
    Open/high/low/close range for one side of a quote.

    Attributes:
        open: Opening price
        high: Highest price
        low: Lowest price
        close: Closing price
    """
    open: float
    high: float
    low: float
    close: float

    def update(self, other: "Bar") -> None:
        """
        Merge a later range into this one.

        Args:
            other: The range observed after this one
        """
        self.close = other.close
        if self.high < other.high:
            self.high = other.high
        if self.low > other.low:
            self.low = other.low

    def clone(self) -> "Bar":
        return Bar(self.open, self.high, self.low, self.close)

    def to_dict(self) -> dict:
        return {
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close
        }


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class QuoteBar:
    """
    Bid/ask bar used both as an observation and as a consolidated daily bar.

    Attributes:
        symbol: Instrument symbol
        time: Bar start (exchange timezone, naive)
        end_time: Bar end (exchange timezone, naive), if known
        bid: Bid range, or None when the bid side is absent
        ask: Ask range, or None when the ask side is absent
        last_bid_size: Size of the last bid seen
        last_ask_size: Size of the last ask seen
        value: Pass-through scalar value, last write wins
        period: Duration covered by the bar (accumulated when consolidated)
    """
    symbol: str
    time: datetime
    end_time: Optional[datetime] = None
    bid: Optional[Bar] = None
    ask: Optional[Bar] = None
    last_bid_size: float = 0.0
    last_ask_size: float = 0.0
    value: float = 0.0
    period: timedelta = field(default_factory=timedelta)

    def __post_init__(self):
        if self.end_time is not None and not self.period:
            self.period = self.end_time - self.time

    def clone(self) -> "QuoteBar":
        """Return a deep copy sharing no mutable state with this bar."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Convert bar to dictionary for JSON serialization."""
        return {
            "symbol": self.symbol,
            "time": _format_time(self.time),
            "end_time": _format_time(self.end_time),
            "bid": self.bid.to_dict() if self.bid else None,
            "ask": self.ask.to_dict() if self.ask else None,
            "last_bid_size": self.last_bid_size,
            "last_ask_size": self.last_ask_size,
            "value": self.value,
            "period_seconds": self.period.total_seconds()
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class TradeBar:
    """
    Trade OHLCV bar used both as an observation and as a consolidated daily bar.

    Attributes:
        symbol: Instrument symbol
        time: Bar start (exchange timezone, naive)
        end_time: Bar end (exchange timezone, naive), if known
        open: Opening trade price
        high: Highest trade price
        low: Lowest trade price
        close: Closing trade price
        volume: Traded volume
        period: Duration covered by the bar (accumulated when consolidated)
    """
    symbol: str
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    end_time: Optional[datetime] = None
    period: timedelta = field(default_factory=timedelta)

    def __post_init__(self):
        if self.end_time is not None and not self.period:
            self.period = self.end_time - self.time

    @property
    def value(self) -> float:
        return self.close

    def clone(self) -> "TradeBar":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Convert bar to dictionary for JSON serialization."""
        return {
            "symbol": self.symbol,
            "time": _format_time(self.time),
            "end_time": _format_time(self.end_time),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "period_seconds": self.period.total_seconds()
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


ConsolidatedBar = Union[QuoteBar, TradeBar]


@dataclass(frozen=True)
class BarConsolidated:
    """
    Notification delivered to listeners when a daily bar closes.

    Attributes:
        bar: The finalized bar; the consolidator keeps no reference to it
        close_time_utc: The boundary instant the bar closed at
    """
    bar: ConsolidatedBar
    close_time_utc: datetime
