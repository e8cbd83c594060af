"""
Date helpers shared by the providers.

All checkpoint and request timestamps are exchanged as ISO-8601 UTC
strings with millisecond precision and a ``Z`` suffix.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

MOSCOW_TZ = ZoneInfo("Europe/Moscow")


@dataclass(frozen=True)
class DateRange:
    """Sync window with both ends inclusive."""

    date_from: datetime
    date_to: datetime

    @property
    def human_readable(self) -> str:
        return (
            f"{self.date_from.astimezone(MOSCOW_TZ).strftime('%d.%m.%Y')} - "
            f"{self.date_to.astimezone(MOSCOW_TZ).strftime('%d.%m.%Y')}"
        )


def to_iso_utc(value: datetime, timespec: str = "milliseconds") -> str:
    """
    Format a datetime as an ISO-8601 UTC string with a ``Z`` suffix.

    Naive datetimes are assumed to already be in UTC.

    Args:
        value: Datetime to format
        timespec: isoformat precision ("seconds" for Ozon, "microseconds" for checkpoints)

    Returns:
        str: e.g. ``2024-01-15T10:30:00.000Z``
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc_value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc_value.isoformat(timespec=timespec) + "Z"


def parse_iso(value: str, default_tz: tzinfo = timezone.utc) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Args:
        value: Timestamp string, with or without offset
        default_tz: Zone applied when the string carries no offset

    Returns:
        datetime: Timezone-aware datetime
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def next_date_from(last_change_date: str, default_tz: tzinfo = MOSCOW_TZ) -> str:
    """
    Compute the next statistics request boundary: the last change date plus 1ms.

    The statistics API reports naive Moscow-time timestamps, hence the default zone.
    """
    return to_iso_utc(parse_iso(last_change_date, default_tz) + timedelta(milliseconds=1))


def calculate_date_range(
    days: int,
    exclude_today: bool = True,
    now: Optional[datetime] = None,
    tz: tzinfo = MOSCOW_TZ,
) -> DateRange:
    """
    Build the rolling sync window in the given zone.

    The window starts at midnight ``days`` days ago and ends at the end of
    yesterday (or now, when today is included).

    Args:
        days: Number of days to look back
        exclude_today: End the window at the end of yesterday
        now: Reference time, defaults to the current time
        tz: Business timezone

    Returns:
        DateRange: Window expressed as aware UTC datetimes
    """
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    start_of_today = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    date_from = start_of_today - timedelta(days=days)
    if exclude_today:
        date_to = start_of_today - timedelta(microseconds=1000)
    else:
        date_to = local_now
    return DateRange(
        date_from=date_from.astimezone(timezone.utc),
        date_to=date_to.astimezone(timezone.utc),
    )


def filter_by_date(
    records: Iterable[Dict[str, Any]],
    field: str,
    window: DateRange,
    default_tz: tzinfo = MOSCOW_TZ,
) -> List[Dict[str, Any]]:
    """
    Keep the records whose ``field`` falls inside the window.

    Records missing the field are dropped.
    """
    kept = []
    for record in records:
        raw = record.get(field)
        if not raw:
            continue
        moment = parse_iso(raw, default_tz)
        if window.date_from <= moment <= window.date_to:
            kept.append(record)
    return kept
