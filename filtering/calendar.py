"""Calendar bucketing of events relative to the viewer's local time."""
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from history.models import CalendarPeriod, Event, Period

logger = logging.getLogger(__name__)

PAST = 'past'
TODAY = 'today'
TOMORROW = 'tomorrow'
THIS_WEEKEND = 'thisWeekend'
THIS_WEEK = 'thisWeek'
NEXT_WEEK = 'nextWeek'
THIS_MONTH = 'thisMonth'
NEXT_MONTH = 'nextMonth'
OTHER = 'other'

PERIOD_LABELS = {
    PAST: 'Past',
    TODAY: 'Today',
    TOMORROW: 'Tomorrow',
    THIS_WEEKEND: 'This weekend',
    THIS_WEEK: 'This week',
    NEXT_WEEK: 'Next week',
    THIS_MONTH: 'This month',
    NEXT_MONTH: 'Next month',
    OTHER: 'Other',
}

# Display order in the calendar: past, present, future
TIME_PERIODS = [
    PAST, TODAY, TOMORROW, THIS_WEEK, THIS_WEEKEND, NEXT_WEEK, THIS_MONTH, NEXT_MONTH
]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def resolve_timezone(tz: Any) -> tzinfo:
    """
    Resolve a timezone argument into a tzinfo.

    Args:
        tz: tzinfo instance, IANA name (e.g. "Europe/Paris") or None for UTC

    Returns:
        tzinfo; unknown names fall back to UTC
    """
    if isinstance(tz, tzinfo):
        return tz
    if tz is None or (isinstance(tz, str) and tz.strip().upper() in ('', 'UTC', 'Z')):
        return timezone.utc
    if isinstance(tz, str):
        try:
            return ZoneInfo(tz.strip())
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{tz}', falling back to UTC")
            return timezone.utc
    logger.warning(f"Unsupported timezone value {tz!r}, falling back to UTC")
    return timezone.utc


def to_local(value: datetime, zone: tzinfo) -> datetime:
    """Convert an instant to the viewer's zone; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone)


def _midnight(day: date, zone: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone)


def _month_start(year: int, month: int) -> Tuple[int, int]:
    if month > 12:
        return year + 1, month - 12
    return year, month


def bucket_of(event: Event, now: datetime, tz: Any = None) -> Period:
    """
    Classify an event into exactly one temporal bucket.

    Rules are evaluated in priority order and the first match wins: past,
    today, tomorrow, thisWeekend, thisWeek, nextWeek, thisMonth, nextMonth,
    other. Weeks start on Monday (ISO 8601). All comparisons use the
    event's instants converted to the viewer's zone.

    Args:
        event: Event with starts_at/ends_at instants
        now: Current instant
        tz: Viewer timezone (see resolve_timezone)

    Returns:
        Period with key, label and half-open [start_date, end_date) bounds
    """
    zone = resolve_timezone(tz)
    now_local = to_local(now, zone)
    start = to_local(event.starts_at, zone)
    end = to_local(event.ends_at, zone)

    today = now_local.date()
    today_start = _midnight(today, zone)
    tomorrow_start = _midnight(today + timedelta(days=1), zone)
    day_after_start = _midnight(today + timedelta(days=2), zone)

    if end < now_local:
        return _period(PAST, _EPOCH.astimezone(zone), now_local)

    if start < now_local < end or start.date() == today:
        return _period(TODAY, today_start, tomorrow_start)

    if start < day_after_start and (end > tomorrow_start or start >= tomorrow_start):
        return _period(TOMORROW, tomorrow_start, day_after_start)

    current_week = now_local.isocalendar()[:2]
    start_week = start.isocalendar()[:2]
    week_start_day = today - timedelta(days=today.weekday())

    if start.weekday() >= 5 and start_week == current_week:
        saturday = week_start_day + timedelta(days=5)
        return _period(
            THIS_WEEKEND,
            _midnight(saturday, zone),
            _midnight(saturday + timedelta(days=2), zone)
        )

    if start_week == current_week:
        return _period(
            THIS_WEEK,
            _midnight(week_start_day, zone),
            _midnight(week_start_day + timedelta(days=7), zone)
        )

    next_week_day = week_start_day + timedelta(days=7)
    if start_week == next_week_day.isocalendar()[:2]:
        return _period(
            NEXT_WEEK,
            _midnight(next_week_day, zone),
            _midnight(next_week_day + timedelta(days=7), zone)
        )

    this_month = (now_local.year, now_local.month)
    next_month = _month_start(now_local.year, now_local.month + 1)
    after_next_month = _month_start(now_local.year, now_local.month + 2)
    start_month = (start.year, start.month)

    if start_month == this_month:
        return _period(
            THIS_MONTH,
            _midnight(date(*this_month, 1), zone),
            _midnight(date(*next_month, 1), zone)
        )

    if start_month == next_month:
        return _period(
            NEXT_MONTH,
            _midnight(date(*next_month, 1), zone),
            _midnight(date(*after_next_month, 1), zone)
        )

    return _period(OTHER, start, end)


def _period(key: str, start_date: datetime, end_date: datetime) -> Period:
    return Period(
        key=key,
        label=PERIOD_LABELS[key],
        start_date=start_date,
        end_date=end_date
    )


def group_and_count_events_by_period(
    events: Iterable[Event],
    now: datetime,
    tz: Any = None
) -> Tuple[List[CalendarPeriod], Dict[str, int]]:
    """
    Bucket and tally events in a single pass.

    Events in the 'other' bucket are left out of both the groups and the
    counts.

    Args:
        events: Events to group
        now: Current instant
        tz: Viewer timezone

    Returns:
        Tuple of (periods in display order, count per period key)
    """
    zone = resolve_timezone(tz)
    by_key: Dict[str, CalendarPeriod] = {}
    counts: Dict[str, int] = {}

    for event in events:
        period = bucket_of(event, now, zone)
        if period.key == OTHER:
            continue

        group = by_key.get(period.key)
        if group is None:
            group = CalendarPeriod(
                key=period.key,
                label=period.label,
                start_date=period.start_date,
                end_date=period.end_date,
                events=[]
            )
            by_key[period.key] = group
        group.events.append(event)
        counts[period.key] = counts.get(period.key, 0) + 1

    for group in by_key.values():
        group.events.sort(key=lambda e: to_local(e.starts_at, zone))

    periods = sorted(by_key.values(), key=lambda p: TIME_PERIODS.index(p.key))
    return periods, counts


def group_events_by_periods(
    events: Iterable[Event],
    now: datetime,
    tz: Any = None
) -> Tuple[List[CalendarPeriod], int]:
    """
    Group events by calendar period.

    Returns:
        Tuple of (periods in display order, number of input events)
    """
    events = list(events)
    periods, _ = group_and_count_events_by_period(events, now, tz)
    return periods, len(events)
