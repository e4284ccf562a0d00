"""Tests for the zoned time-of-day consolidator."""

from datetime import datetime, time, timedelta, timezone

import pytest

from consolidation.aggregators import TradeBarAggregator
from consolidation.consolidator import TriggerTime, ZonedTimeOfDayConsolidator
from consolidation.models import QuoteBar, TradeBar
from consolidation.schedule import UnknownTimezoneError
from tests.factories import HOUR, collect, hourly, quote, trade


@pytest.fixture
def new_york():
    """Close at 17:00 New York, data stamped in New York."""
    return ZonedTimeOfDayConsolidator(time(17, 0), "America/New_York", "America/New_York")


def feed(consolidator, timestamps, period=HOUR):
    for timestamp in timestamps:
        consolidator.update(quote(timestamp, period=period))


class TestLondonCloseNewYorkExchange:

    def test_two_days_of_hourly_bars(self):
        consolidator = ZonedTimeOfDayConsolidator(time(3, 0), "Europe/London", "America/New_York")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 1, 6, 0, 0), datetime(2025, 1, 7, 23, 0)))

        # 03:00 GMT is 22:00 EST the previous evening
        assert [e.bar.end_time for e in events] == [datetime(2025, 1, 6, 22, 0), datetime(2025, 1, 7, 22, 0)]
        assert [e.bar.time for e in events] == [datetime(2025, 1, 5, 22, 0), datetime(2025, 1, 6, 22, 0)]
        assert consolidator.working_data.time == datetime(2025, 1, 7, 22, 0)

    def test_two_days_while_offsets_differ(self):
        consolidator = ZonedTimeOfDayConsolidator(time(3, 0), "Europe/London", "America/New_York")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 3, 12, 0, 0), datetime(2025, 3, 13, 23, 0)))

        # New York is on EDT, London still on GMT: 4 hour offset
        assert [e.bar.end_time for e in events] == [datetime(2025, 3, 12, 23, 0), datetime(2025, 3, 13, 23, 0)]

    def test_point_observations(self):
        consolidator = ZonedTimeOfDayConsolidator(time(3, 0), "Europe/London", "America/New_York")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 1, 6, 0, 0), datetime(2025, 1, 7, 23, 0)), period=None)

        assert [e.bar.end_time for e in events] == [datetime(2025, 1, 6, 22, 0), datetime(2025, 1, 7, 22, 0)]

    def test_exchange_spring_forward(self):
        consolidator = ZonedTimeOfDayConsolidator(time(3, 0), "Europe/London", "America/New_York")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 3, 8, 0, 0), datetime(2025, 3, 10, 23, 0)))

        assert [e.bar.end_time for e in events] == [
            datetime(2025, 3, 8, 22, 0),
            datetime(2025, 3, 9, 23, 0),
            datetime(2025, 3, 10, 23, 0),
        ]
        closes = [e.close_time_utc for e in events]
        assert [b - a for a, b in zip(closes, closes[1:])] == [timedelta(hours=24)] * 2


class TestDaylightSavingCloseZone:

    def test_spring_forward(self):
        consolidator = ZonedTimeOfDayConsolidator(time(17, 0), "America/New_York", "UTC")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 3, 7, 0, 0), datetime(2025, 3, 10, 23, 0)))

        ends = [e.bar.end_time for e in events]
        assert ends == [
            datetime(2025, 3, 7, 22, 0),
            datetime(2025, 3, 8, 22, 0),
            datetime(2025, 3, 9, 21, 0),
            datetime(2025, 3, 10, 21, 0),
        ]
        assert [b - a for a, b in zip(ends, ends[1:])] == [HOUR * 24, HOUR * 23, HOUR * 24]

    def test_fall_back(self):
        consolidator = ZonedTimeOfDayConsolidator(time(17, 0), "America/New_York", "UTC")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 10, 31, 0, 0), datetime(2025, 11, 3, 23, 0)))

        ends = [e.bar.end_time for e in events]
        assert [b - a for a, b in zip(ends, ends[1:])] == [HOUR * 24, HOUR * 25, HOUR * 24]
        assert ends[-1] == datetime(2025, 11, 3, 22, 0)

    def test_close_inside_exchange_repeated_hour(self):
        # 06:30 UTC on 2025-11-02 is the second 01:30 in New York
        consolidator = ZonedTimeOfDayConsolidator(time(6, 30), "UTC", "America/New_York")
        events = collect(consolidator)
        schedule = consolidator.schedule
        consolidator.update(quote(datetime(2025, 11, 1, 8, 0)))

        now = datetime(2025, 11, 1, 12, 0, tzinfo=timezone.utc)
        while now <= datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc):
            local_now = schedule.to_exchange_local(now)
            if (now.hour, now.minute, now.second) == (14, 0, 0):
                consolidator.update(quote(local_now))
            consolidator.scan(local_now)
            now += timedelta(seconds=10)

        assert [e.close_time_utc for e in events] == [
            datetime(2025, 11, 2, 6, 30, tzinfo=timezone.utc),
            datetime(2025, 11, 3, 6, 30, tzinfo=timezone.utc),
        ]
        assert events[0].bar.time == datetime(2025, 11, 1, 2, 30)
        assert events[1].bar.time == datetime(2025, 11, 2, 1, 30)

    def test_consecutive_bars_meet_at_close(self):
        consolidator = ZonedTimeOfDayConsolidator(time(17, 0), "America/New_York", "UTC")
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 10, 31, 0, 0), datetime(2025, 11, 3, 23, 0)))

        bars = [e.bar for e in events]
        for previous, current in zip(bars, bars[1:]):
            assert previous.end_time == current.time


class TestScan:

    def test_scan_emits_at_close(self, new_york):
        events = collect(new_york)
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))

        assert new_york.scan(datetime(2025, 1, 6, 16, 59, 0)) is None
        bar = new_york.scan(datetime(2025, 1, 6, 17, 0, 20))

        assert bar is not None
        assert bar.time == datetime(2025, 1, 5, 17, 0)
        assert bar.end_time == datetime(2025, 1, 6, 17, 0)
        assert len(events) == 1
        assert new_york.working_data is None

    def test_repeated_scans_do_not_emit_again(self, new_york):
        events = collect(new_york)
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))

        new_york.scan(datetime(2025, 1, 6, 17, 0, 20))
        assert new_york.scan(datetime(2025, 1, 6, 17, 0, 20)) is None
        assert new_york.scan(datetime(2025, 1, 6, 17, 0, 25)) is None
        assert len(events) == 1

    def test_scan_just_before_close_does_not_emit(self, new_york):
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))

        assert new_york.scan(datetime(2025, 1, 6, 16, 59, 45)) is None
        assert new_york.scan(datetime(2025, 1, 6, 17, 0, 0)) is not None

    def test_scan_outside_tolerance_does_not_emit(self, new_york):
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))

        assert new_york.scan(datetime(2025, 1, 6, 17, 0, 30)) is not None

        new_york.update(quote(datetime(2025, 1, 7, 10, 0)))
        assert new_york.scan(datetime(2025, 1, 7, 17, 0, 31)) is None
        assert new_york.working_data is not None

    def test_scan_without_working_bar(self, new_york):
        events = collect(new_york)
        assert new_york.scan(datetime(2025, 1, 6, 17, 0)) is None
        assert events == []

    def test_sparse_market_with_minute_scans(self, new_york):
        events = collect(new_york)
        observations = {
            datetime(2025, 1, 6, 10, 0): quote(datetime(2025, 1, 6, 10, 0), bid=(1.0, 1.2, 0.9, 1.1)),
            datetime(2025, 1, 7, 9, 0): quote(datetime(2025, 1, 7, 9, 0), bid=(1.1, 1.5, 1.1, 1.4)),
        }

        now = datetime(2025, 1, 6, 10, 0)
        while now <= datetime(2025, 1, 7, 18, 0):
            if now in observations:
                new_york.update(observations[now])
            new_york.scan(now)
            now += timedelta(minutes=1)

        assert [e.bar.end_time for e in events] == [datetime(2025, 1, 6, 17, 0), datetime(2025, 1, 7, 17, 0)]
        assert events[0].bar.bid.high == 1.2
        assert events[1].bar.time == datetime(2025, 1, 6, 17, 0)
        assert events[1].bar.bid.high == 1.5


class TestUpdate:

    def test_update_returns_consolidated_bar(self, new_york):
        assert new_york.update(quote(datetime(2025, 1, 6, 15, 0), period=HOUR)) is None
        bar = new_york.update(quote(datetime(2025, 1, 6, 16, 0), period=HOUR))

        assert isinstance(bar, QuoteBar)
        assert bar.end_time == datetime(2025, 1, 6, 17, 0)
        assert bar.period == timedelta(hours=2)

    def test_range_merge_over_a_day(self, new_york):
        events = collect(new_york)
        new_york.update(quote(datetime(2025, 1, 6, 10, 0), bid=(1.08, 1.1, 1.05, 1.09)))
        new_york.update(quote(datetime(2025, 1, 6, 11, 0), bid=(1.09, 1.3, 1.15, 1.2)))
        new_york.update(quote(datetime(2025, 1, 6, 12, 0), bid=(1.2, 1.2, 1.0, 1.12)))
        new_york.scan(datetime(2025, 1, 6, 17, 0))

        bid = events[0].bar.bid
        assert (bid.high, bid.low, bid.close) == (1.3, 1.0, 1.12)

    def test_late_data_is_dropped(self, new_york):
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))
        new_york.scan(datetime(2025, 1, 6, 17, 0))

        assert new_york.update(quote(datetime(2025, 1, 6, 16, 59))) is None
        assert new_york.working_data is None

    def test_late_data_does_not_touch_next_bar(self, new_york):
        events = collect(new_york)
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))
        new_york.scan(datetime(2025, 1, 6, 17, 0))
        new_york.update(quote(datetime(2025, 1, 6, 17, 30), bid=(1.0, 1.2, 0.9, 1.1)))

        late = quote(datetime(2025, 1, 6, 16, 0), bid=(5.0, 9.0, 0.1, 5.0), period=HOUR)
        assert new_york.update(late) is None

        working = new_york.working_data
        assert (working.bid.high, working.bid.low, working.bid.close) == (1.2, 0.9, 1.1)
        assert working.time == datetime(2025, 1, 6, 17, 0)
        assert new_york.last_emit_time == datetime(2025, 1, 6, 17, 0)
        assert len(events) == 1

    def test_data_on_close_starts_next_bar(self, new_york):
        new_york.update(quote(datetime(2025, 1, 6, 10, 0)))
        new_york.scan(datetime(2025, 1, 6, 17, 0))

        assert new_york.update(quote(datetime(2025, 1, 6, 17, 0))) is None
        assert new_york.working_data.time == datetime(2025, 1, 6, 17, 0)

    def test_bar_started_on_close_does_not_emit(self, new_york):
        events = collect(new_york)

        assert new_york.update(quote(datetime(2025, 1, 6, 17, 0, 10))) is None
        assert new_york.working_data.time == datetime(2025, 1, 6, 17, 0)
        assert events == []

    def test_last_emit_time_advances(self, new_york):
        assert new_york.last_emit_time is None

        feed(new_york, hourly(datetime(2025, 1, 6, 9, 0), datetime(2025, 1, 8, 9, 0)))

        assert new_york.last_emit_time == datetime(2025, 1, 7, 17, 0)

    def test_emitted_bar_is_not_touched_again(self, new_york):
        events = collect(new_york)
        new_york.update(quote(datetime(2025, 1, 6, 16, 0), bid=(1.0, 1.0, 1.0, 1.0), period=HOUR))
        emitted = events[0].bar

        new_york.update(quote(datetime(2025, 1, 6, 17, 0), bid=(5.0, 5.0, 5.0, 5.0), period=HOUR))

        assert emitted.bid.high == 1.0
        assert emitted.end_time == datetime(2025, 1, 6, 17, 0)

    def test_working_data_is_a_copy(self, new_york):
        new_york.update(quote(datetime(2025, 1, 6, 10, 0), bid=(1.0, 1.2, 0.9, 1.1)))

        snapshot = new_york.working_data
        snapshot.bid.high = 99.0
        snapshot.time = datetime(2000, 1, 1)

        assert new_york.working_data.bid.high == 1.2
        assert new_york.working_data.time == datetime(2025, 1, 5, 17, 0)


class TestEmissionPolicy:

    def test_zero_tolerance(self):
        consolidator = ZonedTimeOfDayConsolidator(
            time(17, 0), "America/New_York", "America/New_York", emit_tolerance=timedelta(0)
        )
        consolidator.update(quote(datetime(2025, 1, 6, 10, 0)))

        assert consolidator.scan(datetime(2025, 1, 6, 17, 0, 20)) is None
        assert consolidator.scan(datetime(2025, 1, 6, 17, 0, 0)) is not None

    @pytest.mark.parametrize("trigger_time, bars_in_day", [
        (TriggerTime.END, 8),
        ("start", 9),
    ])
    def test_trigger_time(self, trigger_time, bars_in_day):
        consolidator = ZonedTimeOfDayConsolidator(
            time(17, 0), "America/New_York", "America/New_York", trigger_time=trigger_time
        )
        events = collect(consolidator)

        feed(consolidator, hourly(datetime(2025, 1, 6, 9, 0), datetime(2025, 1, 6, 18, 0)))

        assert len(events) == 1
        assert events[0].bar.end_time == datetime(2025, 1, 6, 17, 0)
        assert events[0].bar.period == HOUR * bars_in_day

    def test_trade_bars(self):
        consolidator = ZonedTimeOfDayConsolidator(
            time(0, 0), "UTC", "UTC", aggregator=TradeBarAggregator()
        )
        events = collect(consolidator)

        for i, timestamp in enumerate(hourly(datetime(2025, 1, 6, 0, 0), datetime(2025, 1, 6, 23, 0))):
            price = 100.0 + i
            consolidator.update(trade(timestamp, price, price + 1, price - 1, price + 0.5, period=HOUR))

        assert consolidator.input_type is TradeBar
        assert consolidator.output_type is TradeBar
        bar = events[0].bar
        assert (bar.time, bar.end_time) == (datetime(2025, 1, 6, 0, 0), datetime(2025, 1, 7, 0, 0))
        assert (bar.open, bar.high, bar.low, bar.close) == (100.0, 124.0, 99.0, 123.5)
        assert bar.volume == pytest.approx(24.0)


class TestListeners:

    def test_listeners_called_in_order(self, new_york):
        calls = []
        new_york.subscribe(lambda e: calls.append(("first", e.bar.end_time)))
        new_york.subscribe(lambda e: calls.append(("second", e.bar.end_time)))

        new_york.update(quote(datetime(2025, 1, 6, 16, 0), period=HOUR))

        close = datetime(2025, 1, 6, 17, 0)
        assert calls == [("first", close), ("second", close)]

    def test_unsubscribe(self, new_york):
        events = []
        new_york.subscribe(events.append)
        new_york.unsubscribe(events.append)
        new_york.unsubscribe(events.append)

        new_york.update(quote(datetime(2025, 1, 6, 16, 0), period=HOUR))

        assert events == []

    def test_failing_listener_does_not_block_others(self, new_york):
        def broken(event):
            raise RuntimeError("listener failure")

        new_york.subscribe(broken)
        events = collect(new_york)

        bar = new_york.update(quote(datetime(2025, 1, 6, 16, 0), period=HOUR))

        assert bar is not None
        assert len(events) == 1
        assert new_york.working_data is None
        assert new_york.last_emit_time == datetime(2025, 1, 6, 17, 0)


class TestConstruction:

    def test_unknown_timezone(self):
        with pytest.raises(UnknownTimezoneError):
            ZonedTimeOfDayConsolidator(time(17, 0), "Europe/Atlantis", "America/New_York")

    def test_defaults(self):
        consolidator = ZonedTimeOfDayConsolidator(timedelta(hours=17))

        assert consolidator.schedule.close_time_zone.key == "UTC"
        assert consolidator.schedule.exchange_time_zone.key == "America/New_York"
        assert consolidator.output_type is QuoteBar
        assert consolidator.trigger_time is TriggerTime.END
        assert consolidator.working_data is None
