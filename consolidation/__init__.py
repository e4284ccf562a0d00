"""Consolidation Package for Zoned Daily Bars."""

from .models import Bar, QuoteBar, TradeBar, BarConsolidated
from .schedule import DailyCloseSchedule, UnknownTimezoneError, EMIT_TOLERANCE
from .aggregators import BarAggregator, QuoteBarAggregator, TradeBarAggregator
from .consolidator import ZonedTimeOfDayConsolidator, TriggerTime

__all__ = [
    "Bar",
    "QuoteBar",
    "TradeBar",
    "BarConsolidated",
    "DailyCloseSchedule",
    "UnknownTimezoneError",
    "EMIT_TOLERANCE",
    "BarAggregator",
    "QuoteBarAggregator",
    "TradeBarAggregator",
    "ZonedTimeOfDayConsolidator",
    "TriggerTime"
]
