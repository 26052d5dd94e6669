"""
Date-range and entity filters over review records.

All windows are half-open: start is inclusive, end is exclusive. Entity
filters treat an empty selection as "no filter".
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from review_analytics.models.schemas import DateRange, ReviewFilters


logger = logging.getLogger(__name__)


def record_field(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a pydantic model, object or mapping."""
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    A trailing Z is accepted and naive values are treated as UTC.
    Returns None when the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def filter_by_date(records: Sequence[Any], date_range: DateRange) -> List[Any]:
    """Keep records whose review_timestamp falls in [start, end)."""
    kept = []
    unparseable = 0
    for record in records:
        timestamp = parse_timestamp(record_field(record, "review_timestamp"))
        if timestamp is None:
            unparseable += 1
            continue
        if date_range.start <= timestamp < date_range.end:
            kept.append(record)

    if unparseable:
        logger.debug(f"Excluded {unparseable} records with unparseable timestamps")
    return kept


def _filter_by_field(records: Sequence[Any], field: str, values: Sequence[str]) -> List[Any]:
    if not values:
        return list(records)
    wanted = set(values)
    return [r for r in records if record_field(r, field) in wanted]


def filter_by_agents(records: Sequence[Any], agent_ids: Sequence[str]) -> List[Any]:
    """Keep records for the given agents; an empty list keeps everything."""
    return _filter_by_field(records, "agent_id", agent_ids)


def filter_by_departments(records: Sequence[Any], department_ids: Sequence[str]) -> List[Any]:
    """Keep records for the given departments; an empty list keeps everything."""
    return _filter_by_field(records, "department_id", department_ids)


def filter_by_sources(records: Sequence[Any], sources: Sequence[str]) -> List[Any]:
    """Keep records from the given source channels; an empty list keeps everything."""
    return _filter_by_field(records, "source", sources)


def previous_period(date_range: DateRange) -> DateRange:
    """
    Equal-length window immediately before date_range.

    Computed from the raw duration, not calendar units.
    """
    length = date_range.end - date_range.start
    return DateRange(start=date_range.start - length, end=date_range.start, label="Previous period")


def get_date_ranges(reference: Optional[datetime] = None) -> Dict[str, DateRange]:
    """
    Named ranges relative to the calendar day of the reference instant.

    Args:
        reference: Instant the ranges are computed from (default: current local time)

    Returns:
        Dict of range key to DateRange
    """
    if reference is None:
        reference = datetime.now().astimezone()
    tz = reference.tzinfo
    today = datetime(reference.year, reference.month, reference.day, tzinfo=tz)
    tomorrow = today + timedelta(days=1)

    month_start = datetime(reference.year, reference.month, 1, tzinfo=tz)
    if reference.month == 12:
        next_month_start = datetime(reference.year + 1, 1, 1, tzinfo=tz)
    else:
        next_month_start = datetime(reference.year, reference.month + 1, 1, tzinfo=tz)
    if reference.month == 1:
        last_month_start = datetime(reference.year - 1, 12, 1, tzinfo=tz)
    else:
        last_month_start = datetime(reference.year, reference.month - 1, 1, tzinfo=tz)

    return {
        "last_7_days": DateRange(start=today - timedelta(days=7), end=tomorrow, label="Last 7 days"),
        "last_30_days": DateRange(start=today - timedelta(days=30), end=tomorrow, label="Last 30 days"),
        "last_90_days": DateRange(start=today - timedelta(days=90), end=tomorrow, label="Last 90 days"),
        "this_month": DateRange(start=month_start, end=next_month_start, label="This month"),
        "last_month": DateRange(start=last_month_start, end=month_start, label="Last month"),
        "this_year": DateRange(
            start=datetime(reference.year, 1, 1, tzinfo=tz),
            end=datetime(reference.year + 1, 1, 1, tzinfo=tz),
            label="This year"
        ),
    }


def apply_filters(records: Sequence[Any], filters: ReviewFilters) -> Tuple[List[Any], Optional[List[Any]]]:
    """
    Apply the dashboard filter state.

    Returns:
        Tuple of (current-period records, previous-period records or None
        when compare mode is off)
    """
    def narrow(selected: List[Any]) -> List[Any]:
        selected = filter_by_departments(selected, filters.departments)
        selected = filter_by_agents(selected, filters.agents)
        return filter_by_sources(selected, filters.sources)

    current = narrow(filter_by_date(records, filters.date_range))
    if not filters.compare_mode:
        return current, None

    previous = narrow(filter_by_date(records, previous_period(filters.date_range)))
    return current, previous
