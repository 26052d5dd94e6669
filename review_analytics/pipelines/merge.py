"""
Multi-source merger.

Combines row collections harvested from several spreadsheet exports (live
sync plus historical archives) without forcing a common schema.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from review_analytics.models.schemas import ParsedSheet, ReviewRecord


logger = logging.getLogger(__name__)

SOURCE_TAG_KEY = "source"


@dataclass
class MergeResult:
    """Concatenated rows plus per-origin provenance."""
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)
    counts_by_source: Dict[str, int] = field(default_factory=dict)


def merge_sources(
    batches: Iterable[Tuple[str, ParsedSheet]],
    tag_key: Optional[str] = SOURCE_TAG_KEY
) -> MergeResult:
    """
    Concatenate normalized row batches from several sources.

    Rows keep whatever fields their own normalization produced. When
    tag_key is set, each row is annotated with its batch label unless the
    row already carries a value under that key. No de-duplication happens
    here; see dedupe_by_external_id.

    Args:
        batches: (source label, parsed sheet) pairs in priority order
        tag_key: Row key for the source label, or None to leave rows untouched

    Returns:
        MergeResult with the union of headers, all rows, and row counts per source
    """
    result = MergeResult()
    seen_headers = set()

    for label, sheet in batches:
        for header in sheet.headers:
            if header not in seen_headers:
                seen_headers.add(header)
                result.headers.append(header)

        for row in sheet.rows:
            merged_row = dict(row)
            if tag_key and tag_key not in merged_row:
                merged_row[tag_key] = label
            result.rows.append(merged_row)

        result.counts_by_source[label] = result.counts_by_source.get(label, 0) + len(sheet.rows)
        logger.info(f"Merged {len(sheet.rows)} rows from {label}")

    return result


def dedupe_by_external_id(reviews: Sequence[ReviewRecord]) -> List[ReviewRecord]:
    """
    Drop reviews whose external_id was already seen, keeping the first.

    Reviews without an external_id are always kept.
    """
    seen = set()
    unique = []
    for review in reviews:
        if review.external_id:
            if review.external_id in seen:
                continue
            seen.add(review.external_id)
        unique.append(review)

    if len(unique) < len(reviews):
        logger.info(f"Removed {len(reviews) - len(unique)} duplicate reviews by external_id")
    return unique
