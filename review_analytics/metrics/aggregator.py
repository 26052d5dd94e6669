"""
Metrics aggregation over review records.

Computes rating distributions, averages and 5-star share overall, per agent
and per calendar day. Ratings outside 1-5 are ignored.
"""

import math
from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from review_analytics.metrics.date_ranges import parse_timestamp, record_field
from review_analytics.models.schemas import (
    Agent,
    AgentMetrics,
    DailyMetrics,
    DateRange,
    Department,
    MetricsSummary,
)


VALID_RATINGS = (1, 2, 3, 4, 5)


def round_metric(value: float) -> float:
    """Round half away from zero to 2 decimals."""
    if not value:
        return 0.0
    return math.copysign(math.floor(abs(value) * 100 + 0.5) / 100, value)


def coerce_rating(value: Any) -> Optional[int]:
    """Return the rating as an int in 1-5, or None if it is not a valid rating."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = int(value)
        except ValueError:
            return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, int) and value in VALID_RATINGS:
        return value
    return None


def _summary_fields(counts: Dict[int, int]) -> Dict[str, Any]:
    total = sum(counts.values())
    rating_sum = sum(rating * count for rating, count in counts.items())
    fields = {f"star_{rating}": counts.get(rating, 0) for rating in VALID_RATINGS}
    fields["total"] = total
    fields["avg_rating"] = round_metric(rating_sum / total) if total else 0
    fields["percent_5_star"] = round_metric(counts.get(5, 0) / total * 100) if total else 0
    return fields


def _count_ratings(records: Sequence[Any]) -> Dict[int, int]:
    counts = {rating: 0 for rating in VALID_RATINGS}
    for record in records:
        rating = coerce_rating(record_field(record, "rating"))
        if rating is not None:
            counts[rating] += 1
    return counts


def calculate_metrics(records: Sequence[Any]) -> MetricsSummary:
    """
    Summarize the valid ratings in records.

    Args:
        records: Review-like objects or dicts with a rating field

    Returns:
        MetricsSummary; all zeros when there are no valid ratings
    """
    return MetricsSummary(**_summary_fields(_count_ratings(records)))


def _latest_timestamp(records: Sequence[Any]) -> Optional[str]:
    latest = None
    latest_value = None
    for record in records:
        raw = record_field(record, "review_timestamp")
        parsed = parse_timestamp(raw)
        if parsed is not None and (latest is None or parsed > latest):
            latest = parsed
            latest_value = raw
    return latest_value


def get_agent_metrics(
    records: Sequence[Any],
    agents: Sequence[Agent] = (),
    departments: Sequence[Department] = (),
    include_unresolved: bool = True
) -> List[AgentMetrics]:
    """
    Per-agent summaries sorted by total descending.

    Records without an agent_id are skipped. Agent ids missing from the
    agent collection are reported as "Unknown", or dropped when
    include_unresolved is False.

    Args:
        records: Review-like records
        agents: Agent collection used for name lookup
        departments: Department collection used for name lookup
        include_unresolved: Whether to keep agent ids with no matching Agent

    Returns:
        List of AgentMetrics
    """
    agents_by_id = {agent.id: agent for agent in agents}
    departments_by_id = {department.id: department for department in departments}

    groups: Dict[str, List[Any]] = {}
    for record in records:
        agent_id = record_field(record, "agent_id")
        if not agent_id:
            continue
        groups.setdefault(agent_id, []).append(record)

    results = []
    for agent_id, agent_records in groups.items():
        agent = agents_by_id.get(agent_id)
        if agent is None and not include_unresolved:
            continue
        department = departments_by_id.get(agent.department_id) if agent else None

        results.append(AgentMetrics(
            **_summary_fields(_count_ratings(agent_records)),
            agent_id=agent_id,
            agent_name=agent.display_name if agent else "Unknown",
            department_name=department.name if department else "Unknown",
            last_review_date=_latest_timestamp(agent_records)
        ))

    results.sort(key=lambda m: m.total, reverse=True)
    return results


def _day_key(value) -> str:
    return value.astimezone(timezone.utc).date().isoformat()


def get_daily_metrics(records: Sequence[Any], date_range: DateRange) -> List[DailyMetrics]:
    """
    One summary per calendar day in [start, end), ascending by date.

    Days without reviews are present with zero counts. Records outside the
    range or with an invalid rating are ignored.
    """
    buckets: Dict[str, Dict[int, int]] = {}
    current = date_range.start
    while current < date_range.end:
        buckets.setdefault(_day_key(current), {rating: 0 for rating in VALID_RATINGS})
        current += timedelta(days=1)

    for record in records:
        timestamp = parse_timestamp(record_field(record, "review_timestamp"))
        rating = coerce_rating(record_field(record, "rating"))
        if timestamp is None or rating is None:
            continue
        counts = buckets.get(_day_key(timestamp))
        if counts is not None:
            counts[rating] += 1

    return [
        DailyMetrics(date=day, **_summary_fields(counts))
        for day, counts in sorted(buckets.items())
    ]
