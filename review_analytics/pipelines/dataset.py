"""
In-memory review dataset assembled from the cached snapshot, the optional
historical archive and the user overrides.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import psycopg2

from review_analytics.config.settings import Settings
from review_analytics.data_access.cache_store import CacheStore
from review_analytics.data_access.overrides_store import OverridesStore
from review_analytics.data_access.row_store_client import RowStoreClient
from review_analytics.models.schemas import Agent, Department, ParsedSheet, ReviewRecord
from review_analytics.parsing.review_builder import ReviewBuilder
from review_analytics.pipelines.merge import dedupe_by_external_id, merge_sources


logger = logging.getLogger(__name__)


@dataclass
class Dataset:
    """Materialized reviews plus lookup collections, hidden agents removed."""
    reviews: List[ReviewRecord] = field(default_factory=list)
    agents: List[Agent] = field(default_factory=list)
    departments: List[Department] = field(default_factory=list)
    hidden_agents: List[str] = field(default_factory=list)
    counts_by_source: Dict[str, int] = field(default_factory=dict)
    last_updated: Optional[str] = None

    def copy(self) -> "Dataset":
        """Shallow copy with fresh lists and dicts; the records are shared."""
        return Dataset(
            reviews=list(self.reviews),
            agents=list(self.agents),
            departments=list(self.departments),
            hidden_agents=list(self.hidden_agents),
            counts_by_source=dict(self.counts_by_source),
            last_updated=self.last_updated
        )


class DatasetLoader:
    """
    Loads the review dataset and memoizes it for dataset_ttl_seconds.

    Each reader gets its own shallow copy of the data as it was at load time,
    so reordering or filtering the lists does not leak into the memo. A sync
    running in the meantime only becomes visible after the memo expires or
    refresh().
    """

    def __init__(
        self,
        config: Settings,
        cache_store: Optional[CacheStore] = None,
        overrides: Optional[OverridesStore] = None,
        row_store: Optional[RowStoreClient] = None
    ):
        self.config = config
        self.cache_store = cache_store or CacheStore(config)
        self.overrides = overrides or OverridesStore(config)
        if row_store is None and config.postgres_host:
            row_store = RowStoreClient(config)
        self.row_store = row_store
        self.builder = ReviewBuilder(config)
        self._memo: Optional[Tuple[Dataset, float]] = None

    def refresh(self) -> None:
        """Forget the memoized dataset."""
        self._memo = None

    def close(self) -> None:
        if self.row_store:
            self.row_store.close()

    async def load(self, now: Optional[float] = None) -> Dataset:
        """
        Return the dataset, rebuilding it when the memo is missing or expired.

        Args:
            now: Current time in epoch seconds (default: time.time())
        """
        now = time.time() if now is None else now
        if self._memo is not None:
            dataset, expires_at = self._memo
            if now < expires_at:
                return dataset.copy()

        dataset = await self._build()
        self._memo = (dataset, now + self.config.dataset_ttl_seconds)
        return dataset.copy()

    async def _build(self) -> Dataset:
        (reviews, agents, departments, counts, last_updated), custom_departments, hidden = await asyncio.gather(
            asyncio.to_thread(self._load_reviews),
            asyncio.to_thread(self.overrides.merge_departments, []),
            self._load_hidden_agents()
        )

        agents = self.overrides.apply_agent_overrides(agents)
        reviews = self._reassign_departments(reviews, agents)

        departments = list(departments)
        known = {d.id for d in departments}
        departments.extend(d for d in custom_departments if d.id not in known)

        if hidden:
            hidden_ids = set(hidden)
            reviews = [r for r in reviews if r.agent_id not in hidden_ids]
            agents = [a for a in agents if a.id not in hidden_ids]
            logger.info(f"Excluded {len(hidden_ids)} hidden agents")

        return Dataset(
            reviews=reviews,
            agents=agents,
            departments=departments,
            hidden_agents=hidden,
            counts_by_source=counts,
            last_updated=last_updated
        )

    def _load_reviews(self):
        batches: List[Tuple[str, ParsedSheet]] = []
        last_updated = None

        snapshot = self.cache_store.load_parsed()
        if snapshot is not None:
            batches.append(("live", snapshot))
            cached = self.cache_store.load_snapshot()
            last_updated = cached.last_updated if cached else None
        else:
            logger.warning(f"No cached snapshot in {self.cache_store.cache_dir}, run a sync first")

        if self.config.historical_archive_path:
            archive = self.cache_store.load_archive(self.config.historical_archive_path)
            if archive is not None:
                batches.append(("historical", archive))
            else:
                logger.warning(f"Historical archive not found: {self.config.historical_archive_path}")

        merged = merge_sources(batches)
        reviews, agents, departments = self.builder.build(merged.rows)
        if self.config.dedupe_by_external_id:
            reviews = dedupe_by_external_id(reviews)

        return reviews, agents, departments, merged.counts_by_source, last_updated

    async def _load_hidden_agents(self) -> List[str]:
        hidden = await asyncio.to_thread(self.overrides.get_hidden_agents)
        if self.row_store is None:
            return hidden

        try:
            shared = await asyncio.to_thread(self.row_store.get_hidden_agents)
        except psycopg2.Error as e:
            logger.error(f"Failed to fetch hidden agents from row-store: {e}")
            return hidden

        return hidden + [agent_id for agent_id in shared if agent_id not in hidden]

    @staticmethod
    def _reassign_departments(reviews: List[ReviewRecord], agents: List[Agent]) -> List[ReviewRecord]:
        department_by_agent = {agent.id: agent.department_id for agent in agents}
        result = []
        for review in reviews:
            department_id = department_by_agent.get(review.agent_id)
            if department_id and department_id != review.department_id:
                review = review.model_copy(update={"department_id": department_id})
            result.append(review)
        return result
