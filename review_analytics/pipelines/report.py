"""
Metrics report over the cached review dataset.
"""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from review_analytics.config.settings import Settings
from review_analytics.metrics.aggregator import calculate_metrics, get_agent_metrics, get_daily_metrics
from review_analytics.metrics.date_ranges import apply_filters, get_date_ranges, previous_period
from review_analytics.models.schemas import ReviewFilters
from review_analytics.pipelines.dataset import Dataset, DatasetLoader


logger = logging.getLogger(__name__)


def build_report(
    dataset: Dataset,
    range_key: str = "this_month",
    compare: bool = False,
    departments: Optional[List[str]] = None,
    agents: Optional[List[str]] = None,
    sources: Optional[List[str]] = None,
    reference: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Compute summary, per-agent and per-day metrics for one named range.

    Returns:
        Dict with range, current, previous (None unless compare), agents and daily
    """
    ranges = get_date_ranges(reference)
    if range_key not in ranges:
        raise ValueError(f"Unknown range '{range_key}', expected one of {sorted(ranges)}")
    date_range = ranges[range_key]

    filters = ReviewFilters(
        date_range=date_range,
        departments=departments or [],
        agents=agents or [],
        sources=sources or [],
        compare_mode=compare
    )
    current, previous = apply_filters(dataset.reviews, filters)
    logger.info(f"{date_range.label}: {len(current)} reviews selected")

    return {
        "range": date_range,
        "previous_range": previous_period(date_range) if compare else None,
        "current": calculate_metrics(current),
        "previous": calculate_metrics(previous) if previous is not None else None,
        "agents": get_agent_metrics(current, dataset.agents, dataset.departments),
        "daily": get_daily_metrics(current, date_range),
    }


def export_agent_metrics(report: Dict[str, Any], path: str) -> None:
    """Write the per-agent table to CSV."""
    df = pd.DataFrame([m.model_dump() for m in report["agents"]])
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(df)} agent rows to {path}")


def export_daily_metrics(report: Dict[str, Any], path: str) -> None:
    """Write the per-day series to CSV."""
    df = pd.DataFrame([m.model_dump() for m in report["daily"]])
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(df)} daily rows to {path}")


def main():
    """Main entry point for printing a metrics report with CLI arguments."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Print review metrics for a named date range.'
    )
    parser.add_argument(
        '--range',
        type=str,
        default='this_month',
        choices=sorted(get_date_ranges()),
        help='Named date range (default: this_month)'
    )
    parser.add_argument(
        '--compare',
        action='store_true',
        help='Also compute the previous period of equal length'
    )
    parser.add_argument('--department', action='append', help='Department id filter (repeatable)')
    parser.add_argument('--agent', action='append', help='Agent id filter (repeatable)')
    parser.add_argument('--source', action='append', help='Review channel filter (repeatable)')
    parser.add_argument(
        '--top',
        type=int,
        default=10,
        help='Number of agents to print'
    )
    parser.add_argument('--export', type=str, help='Write per-agent metrics to this CSV file')
    parser.add_argument('--daily-export', type=str, help='Write the per-day series to this CSV file')

    args = parser.parse_args()

    config = Settings()
    loader = DatasetLoader(config)
    try:
        dataset = asyncio.run(loader.load())
    finally:
        loader.close()

    report = build_report(
        dataset,
        range_key=args.range,
        compare=args.compare,
        departments=args.department,
        agents=args.agent,
        sources=args.source
    )
    current = report["current"]

    print("\n" + "="*60)
    print(f"REVIEW METRICS: {report['range'].label}")
    print("="*60)
    print(f"Data last updated: {dataset.last_updated or 'never'}")
    for source, count in dataset.counts_by_source.items():
        print(f"Rows from {source}: {count}")
    print(f"Reviews: {current.total}")
    print(f"Average rating: {current.avg_rating}")
    print(f"5-star: {current.percent_5_star}%")
    print(
        f"Distribution: 5*={current.star_5} 4*={current.star_4} 3*={current.star_3} "
        f"2*={current.star_2} 1*={current.star_1}"
    )

    previous = report["previous"]
    if previous is not None:
        print("-"*60)
        print(f"Previous period: {previous.total} reviews, avg {previous.avg_rating}, "
              f"5-star {previous.percent_5_star}%")

    print("-"*60)
    print("Top agents:")
    for metrics in report["agents"][:args.top]:
        print(f"  {metrics.agent_name:<30} {metrics.total:>5} reviews  avg {metrics.avg_rating}")

    print("-"*60)
    print("Daily:")
    for day in report["daily"]:
        if day.total:
            print(f"  {day.date}  {day.total:>4} reviews  avg {day.avg_rating}")
    print("="*60)

    if args.export:
        export_agent_metrics(report, args.export)
    if args.daily_export:
        export_daily_metrics(report, args.daily_export)


if __name__ == "__main__":
    main()
