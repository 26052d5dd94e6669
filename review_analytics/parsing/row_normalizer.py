"""
Row normalization for spreadsheet exports.

Turns tokenized CSV lines into header-keyed row dicts and infers a canonical
"Agent" field. Agent inference is an ordered list of strategies; the first
strategy that applies to the header row decides the value for every row.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence
from urllib.parse import unquote

from review_analytics.models.schemas import ParsedSheet
from review_analytics.parsing.csv_tokenizer import parse_line, split_logical_lines


logger = logging.getLogger(__name__)

AGENT_KEY = "Agent"

_AGENT_HEADER = re.compile(r"agent", re.IGNORECASE)
_URL_HEADER = re.compile(r"source|url|link|page", re.IGNORECASE)
_AGENT_PARAM = re.compile(r"[?&]agent=([^&]+)", re.IGNORECASE)
_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def strict_unquote(value: str) -> str:
    """
    Percent-decode a string, raising ValueError on malformed input.

    Rejects a '%' not followed by two hex digits and escape sequences that
    do not form valid UTF-8.
    """
    if _MALFORMED_ESCAPE.search(value):
        raise ValueError(f"Malformed percent-encoding in {value!r}")
    return unquote(value, errors="strict")


class AgentStrategy:
    """Base class for agent inference strategies."""

    name = "base"

    def applies(self, headers: Sequence[str]) -> bool:
        raise NotImplementedError

    def extract(self, headers: Sequence[str], row: Dict[str, str]) -> Optional[str]:
        raise NotImplementedError


class ExplicitColumn(AgentStrategy):
    """Use the first header containing 'agent' (case-insensitive)."""

    name = "explicit_column"

    def applies(self, headers: Sequence[str]) -> bool:
        return any(_AGENT_HEADER.search(h) for h in headers)

    def extract(self, headers: Sequence[str], row: Dict[str, str]) -> Optional[str]:
        key = next(h for h in headers if _AGENT_HEADER.search(h))
        return row.get(key, "")


class UrlQueryParam(AgentStrategy):
    """Read an ?agent= query parameter from a source/url/link/page column."""

    name = "url_query_param"

    def applies(self, headers: Sequence[str]) -> bool:
        return any(_URL_HEADER.search(h) for h in headers)

    def extract(self, headers: Sequence[str], row: Dict[str, str]) -> Optional[str]:
        key = next(h for h in headers if _URL_HEADER.search(h))
        url = row.get(key, "")
        try:
            decoded = strict_unquote(url)
            match = _AGENT_PARAM.search(decoded)
            if not match:
                return None
            agent = strict_unquote(match.group(1))
        except ValueError:
            logger.debug(f"Could not decode agent from {url!r}")
            return None

        if agent.endswith("%21"):
            agent = agent[:-3]
        if agent.endswith("!"):
            agent = agent[:-1]
        return agent


class NoAgent(AgentStrategy):
    """Fallback: the row gets no Agent field."""

    name = "none"

    def applies(self, headers: Sequence[str]) -> bool:
        return True

    def extract(self, headers: Sequence[str], row: Dict[str, str]) -> Optional[str]:
        return None


AGENT_STRATEGIES = (ExplicitColumn(), UrlQueryParam(), NoAgent())


def select_agent_strategy(headers: Sequence[str], strategies: Sequence[AgentStrategy] = AGENT_STRATEGIES) -> AgentStrategy:
    """Return the first strategy applicable to this header row."""
    for strategy in strategies:
        if strategy.applies(headers):
            return strategy
    return NoAgent()


def resolve_headers(raw_headers: Sequence[str]) -> List[str]:
    """
    Make header cells usable as unique dict keys.

    Empty cells become col_<index>; a repeated name gets a _<index> suffix,
    appended again while the key is still taken.
    """
    headers = []
    seen = set()
    for index, header in enumerate(raw_headers):
        key = header or f"col_{index}"
        while key in seen:
            key = f"{key}_{index}"
        seen.add(key)
        headers.append(key)
    return headers


def normalize_row(cells: Sequence[str], headers: Sequence[str], strategy: AgentStrategy) -> Dict[str, str]:
    """Build one header-keyed row and attach the canonical Agent value."""
    row = {}
    for index, key in enumerate(headers):
        row[key] = cells[index] if index < len(cells) else ""

    agent = strategy.extract(headers, row)
    if agent is not None:
        row[AGENT_KEY] = agent
    return row


def parse_csv_to_objects(csv_text: str, strategies: Sequence[AgentStrategy] = AGENT_STRATEGIES) -> ParsedSheet:
    """
    Parse a CSV export into headers and row dicts.

    The first logical line is the header row. Blank lines are skipped and
    short lines are padded with empty strings.

    Args:
        csv_text: Raw CSV export
        strategies: Agent inference strategies in priority order

    Returns:
        ParsedSheet with resolved headers and normalized rows
    """
    lines = split_logical_lines(csv_text)
    if not lines:
        return ParsedSheet(headers=[], rows=[])

    headers = resolve_headers(parse_line(lines[0]))
    strategy = select_agent_strategy(headers, strategies)
    logger.debug(f"Agent inference strategy: {strategy.name}")

    rows = []
    skipped = 0
    for line in lines[1:]:
        if not line.strip():
            skipped += 1
            continue
        rows.append(normalize_row(parse_line(line), headers, strategy))

    if skipped:
        logger.debug(f"Skipped {skipped} blank lines")

    return ParsedSheet(headers=headers, rows=rows)
