"""
Build review, agent and department records from normalized spreadsheet rows.

Column names differ between export vintages, so each field is located by a
list of case-insensitive aliases. Aliases are tried in priority order and
the first header that equals or contains the alias wins, so a broader header
earlier in the row can take an alias ahead of a later exact match.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlparse

from dateutil import parser as date_parser

from review_analytics.config.settings import Settings
from review_analytics.models.schemas import Agent, Department, ReviewRecord
from review_analytics.parsing.row_normalizer import AGENT_KEY


logger = logging.getLogger(__name__)

REVIEW_ID_ALIASES = ["review no.", "review no", "review_no"]
RATING_ALIASES = ["how did we do?", "how did we do", "rating"]
DATE_ALIASES = ["entry date", "created", "date", "timestamp"]
SOURCE_ALIASES = ["source url", "source"]
COMMENT_ALIASES = ["please provide your feedback below.", "feedback", "comment"]
NAME_ALIASES = ["name", "customer name", "reviewer name"]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def find_column(headers: Sequence[str], aliases: Sequence[str]) -> Optional[str]:
    """Return the first header matching any alias, trying aliases in order."""
    lowered = [(h, h.lower().strip()) for h in headers]
    for alias in aliases:
        alias = alias.lower()
        for header, low in lowered:
            if low == alias or alias in low:
                return header
    return None


def resolve_columns(headers: Sequence[str]) -> Dict[str, Optional[str]]:
    """Locate every review field in one header layout."""
    return {
        "review_id": find_column(headers, REVIEW_ID_ALIASES),
        "rating": find_column(headers, RATING_ALIASES),
        "date": find_column(headers, DATE_ALIASES),
        "source": find_column(headers, SOURCE_ALIASES),
        "comment": find_column(headers, COMMENT_ALIASES),
        "name": find_column(headers, NAME_ALIASES),
    }


def parse_rating(value: Optional[str]) -> int:
    """Parse the leading integer of a rating cell; 0 when there is none."""
    if not value:
        return 0
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else 0


def slugify_agent(name: str) -> str:
    """Derive an agent id from a display name."""
    slug = re.sub(r"\s+", "_", name.lower())
    slug = re.sub(r"[^a-z0-9_]", "", slug)
    return slug or "unknown"


def to_iso_timestamp(value: datetime) -> str:
    """Format as UTC ISO-8601 with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def classify_source(source_url: str, website_markers: Sequence[str]) -> str:
    """Map a source URL to a review channel label."""
    if "google" in source_url:
        return "google"
    if "yelp" in source_url:
        return "yelp"
    if "facebook" in source_url:
        return "facebook"
    if any(marker in source_url for marker in website_markers):
        return "website"
    return "unknown"


class ReviewBuilder:
    """Converts normalized rows into ReviewRecord, Agent and Department collections."""

    def __init__(self, config: Settings):
        self.config = config

    def build(
        self,
        rows: Sequence[Dict[str, str]],
        reference: Optional[datetime] = None
    ) -> Tuple[List[ReviewRecord], List[Agent], List[Department]]:
        """
        Build records from one normalized row collection.

        Columns are resolved per row layout, so rows merged from exports
        with different headers can be built in one pass. Rows with an
        invalid rating are kept (rating outside 1-5); the aggregator
        excludes them from metrics.

        Args:
            rows: Normalized row dicts
            reference: Instant used for rows with an unparseable date (default: now)

        Returns:
            Tuple of (reviews, agents, departments)
        """
        if reference is None:
            reference = datetime.now(timezone.utc)

        reviews = []
        agents: Dict[str, Agent] = {}
        departments: Dict[str, Department] = {}

        layouts: Dict[Tuple[str, ...], Dict[str, Optional[str]]] = {}

        for index, row in enumerate(rows):
            layout = tuple(row.keys())
            if layout not in layouts:
                layouts[layout] = resolve_columns(layout)
                logger.debug(f"Resolved review columns: {layouts[layout]}")
            review, agent = self._build_one(row, index, layouts[layout], reference)
            reviews.append(review)
            if agent.id not in agents:
                agents[agent.id] = agent
            if review.department_id not in departments:
                departments[review.department_id] = Department(
                    id=review.department_id,
                    name=self.config.default_department_name
                )

        logger.info(f"Built {len(reviews)} reviews for {len(agents)} agents")
        return reviews, list(agents.values()), list(departments.values())

    def _build_one(
        self,
        row: Dict[str, str],
        index: int,
        columns: Dict[str, Optional[str]],
        reference: datetime
    ) -> Tuple[ReviewRecord, Agent]:
        def cell(field: str) -> str:
            column = columns[field]
            return row.get(column, "") if column else ""

        external_id = cell("review_id") or None
        review_id = external_id or f"review_{index + 1}"
        agent_name = row.get(AGENT_KEY) or "Unknown"
        source_url = cell("source") or "unknown"
        agent_id = slugify_agent(agent_name)

        agent = Agent(
            id=agent_id,
            agent_key=agent_id,
            display_name=agent_name[:-1] if agent_name.endswith("!") else agent_name,
            department_id=self.config.default_department_id,
            image_url=self._image_url(source_url, agent_name)
        )

        review = ReviewRecord(
            id=review_id,
            external_id=external_id,
            agent_id=agent_id,
            department_id=self.config.default_department_id,
            rating=parse_rating(cell("rating")),
            comment=self._comment(cell("name"), cell("comment")),
            review_timestamp=self._timestamp(cell("date"), index, reference),
            source=classify_source(source_url, self.config.website_source_markers)
        )
        return review, agent

    @staticmethod
    def _comment(customer_name: str, feedback: str) -> str:
        if customer_name and feedback:
            return f"{customer_name}: {feedback}"
        if customer_name:
            return f"Review by {customer_name}"
        return feedback

    @staticmethod
    def _timestamp(value: str, index: int, reference: datetime) -> str:
        if value:
            try:
                return to_iso_timestamp(date_parser.parse(value))
            except (ValueError, OverflowError):
                pass
        logger.warning(f"Invalid date {value!r} at row {index + 2}, using reference time")
        return to_iso_timestamp(reference)

    def _image_url(self, source_url: str, agent_name: str) -> Optional[str]:
        parsed = urlparse(source_url)
        if not (parsed.scheme and parsed.netloc):
            base_name = re.sub(r"[.\s!]", "", agent_name)
            return self.config.agent_image_fallback_template.format(name=base_name)

        image = parse_qs(parsed.query).get("imgurl")
        if not image:
            return None
        image_url = image[0]
        if image_url.startswith("/"):
            return f"{self.config.agent_image_host}{image_url}"
        return image_url
