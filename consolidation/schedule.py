"""
Daily Close Schedule.

This module computes the instants at which a daily bar closes. The close is a
wall-clock time of day in one timezone while incoming data is stamped in the
exchange timezone, so every comparison is made between absolute (UTC) instants.

Local times that fall into a daylight-saving gap or overlap are resolved
leniently: ambiguous times map to their earlier occurrence unless the naive
time carries ``fold=1``, and nonexistent times are pushed forward by the length
of the gap.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Sampling jitter absorbed when matching a timestamp against a close instant.
EMIT_TOLERANCE = timedelta(seconds=30)

ONE_DAY = timedelta(days=1)


class UnknownTimezoneError(ValueError):
    """Raised when a timezone identifier is not in the timezone database."""


def resolve_zone(name: str) -> ZoneInfo:
    """
    Look up a timezone by its database identifier.

    Args:
        name: Zone identifier, e.g. 'Europe/London'

    Returns:
        The resolved zone

    Raises:
        UnknownTimezoneError: If the identifier is unknown or malformed
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise UnknownTimezoneError(f"Unknown timezone: {name!r}") from e


def inexact_compare(first: datetime, second: datetime,
                    tolerance: timedelta = EMIT_TOLERANCE) -> int:
    """
    Compare two aware datetimes, treating them as equal within a tolerance.

    Returns:
        0 if roughly the same, 1 if ``first`` is later, -1 if earlier
    """
    delta = first - second
    if abs(delta) <= tolerance:
        return 0
    return 1 if delta > timedelta(0) else -1


def _coerce_close_time(value: Union[time, timedelta]) -> time:
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise ValueError("Daily close time must not carry a timezone")
        return value
    if value < timedelta(0) or value >= ONE_DAY:
        raise ValueError(f"Daily close time must be within [0h, 24h), got {value}")
    seconds = int(value.total_seconds())
    return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)


class DailyCloseSchedule:
    """
    A fixed time of day in a close timezone, observed from an exchange timezone.

    Attributes:
        daily_close_time: Wall-clock time of the close (close timezone)
        close_time_zone: Timezone the close time is expressed in
        exchange_time_zone: Timezone incoming data is stamped in
    """

    def __init__(
        self,
        daily_close_time: Union[time, timedelta],
        close_time_zone: str = "UTC",
        exchange_time_zone: str = "America/New_York"
    ):
        """
        Initialize the schedule.

        Args:
            daily_close_time: Close time of day, as a time or a duration since midnight
            close_time_zone: Zone identifier the close time is expressed in
            exchange_time_zone: Zone identifier of the exchange

        Raises:
            UnknownTimezoneError: If either zone identifier is unknown
            ValueError: If the close time is not within a single day
        """
        self._daily_close_time = _coerce_close_time(daily_close_time)
        self._close_time_zone = resolve_zone(close_time_zone)
        self._exchange_time_zone = resolve_zone(exchange_time_zone)

    @property
    def daily_close_time(self) -> time:
        return self._daily_close_time

    @property
    def close_time_zone(self) -> ZoneInfo:
        return self._close_time_zone

    @property
    def exchange_time_zone(self) -> ZoneInfo:
        return self._exchange_time_zone

    @staticmethod
    def localize(local_time: datetime, zone: ZoneInfo) -> datetime:
        """
        Attach a zone to a naive wall time leniently and return the UTC instant.

        The wall time's ``fold`` selects the occurrence of a repeated hour, so
        times produced by ``to_exchange_local`` round-trip exactly.

        Args:
            local_time: Naive wall-clock time
            zone: Zone the wall time is expressed in

        Returns:
            Aware UTC datetime
        """
        return local_time.replace(tzinfo=zone).astimezone(timezone.utc)

    def localize_exchange(self, local_time: datetime) -> datetime:
        """Convert a naive exchange-local time to a UTC instant."""
        return self.localize(local_time, self._exchange_time_zone)

    def to_exchange_local(self, instant: datetime) -> datetime:
        """Convert an aware instant to naive exchange-local time."""
        return instant.astimezone(self._exchange_time_zone).replace(tzinfo=None)

    def close_on(self, day: date) -> datetime:
        """
        Get the close instant of a calendar day in the close timezone.

        Args:
            day: Calendar date in the close timezone

        Returns:
            Aware UTC datetime of that day's close
        """
        return self.localize(datetime.combine(day, self._daily_close_time).replace(fold=0),
                             self._close_time_zone)

    def _last_close_day(self, instant: datetime) -> date:
        local_day = instant.astimezone(self._close_time_zone).date()
        if instant >= self.close_on(local_day):
            return local_day
        return local_day - ONE_DAY

    def last_close_at_or_before(self, instant: datetime) -> datetime:
        """
        Round an instant down to the most recent close.

        The previous day's close is composed from the previous calendar date,
        so consecutive closes are one calendar day apart in the close timezone
        (23, 24 or 25 real hours around daylight-saving transitions).

        Args:
            instant: Aware datetime in any zone

        Returns:
            Aware UTC datetime of the latest close not after ``instant``
        """
        return self.close_on(self._last_close_day(instant))

    def next_close_after(self, instant: datetime) -> datetime:
        """
        Get the first close strictly after an instant.

        Args:
            instant: Aware datetime in any zone

        Returns:
            Aware UTC datetime of the next close
        """
        return self.close_on(self._last_close_day(instant) + ONE_DAY)

    def period_start(self, local_time: datetime) -> datetime:
        """
        Get the start of the daily period containing an exchange-local time.

        Args:
            local_time: Naive exchange-local time

        Returns:
            Naive exchange-local time of the most recent close
        """
        last_close = self.last_close_at_or_before(self.localize_exchange(local_time))
        return self.to_exchange_local(last_close)

    def __repr__(self) -> str:
        return (
            f"DailyCloseSchedule({self._daily_close_time.isoformat()} "
            f"{self._close_time_zone.key}, exchange={self._exchange_time_zone.key})"
        )
