"""Unit tests for DatasetLoader."""
import asyncio
import pytest
from unittest.mock import Mock

import psycopg2

from review_analytics.config.settings import Settings
from review_analytics.data_access.cache_store import CacheStore
from review_analytics.data_access.overrides_store import OverridesStore
from review_analytics.data_access.row_store_client import RowStoreClient
from review_analytics.models.schemas import Department
from review_analytics.parsing.row_normalizer import parse_csv_to_objects
from review_analytics.pipelines.dataset import DatasetLoader


LIVE_CSV = (
    "Review No.,How did we do?,Entry Date,Agent,Source Url\n"
    "1,5,2024-03-01 10:00,Jane,https://www.google.com/maps\n"
    "2,4,2024-03-02 10:00,Bob,https://yelp.com/biz\n"
)

ARCHIVE_CSV = (
    "Review No.,Rating,Date,Source\n"
    "1,5,2024-03-01 10:00,https://x/?agent=Jane\n"
    "3,2,2023-04-01,https://x/?agent=Kim\n"
)


@pytest.fixture
def mock_config(tmp_path):
    """Create a mock configuration backed by temporary files."""
    config = Mock(spec=Settings)
    config.cache_dir = str(tmp_path / "cache")
    config.historical_archive_path = None
    config.overrides_path = str(tmp_path / "overrides.json")
    config.dataset_ttl_seconds = 300
    config.dedupe_by_external_id = False
    config.postgres_host = None
    config.default_department_id = "general"
    config.default_department_name = "General"
    config.agent_image_host = "https://hello.example.com"
    config.agent_image_fallback_template = "https://hello.example.com/uploads/{name}.png"
    config.website_source_markers = ["example.com"]
    return config


@pytest.fixture
def cache_store(mock_config):
    store = CacheStore(mock_config)
    store.save_snapshot(LIVE_CSV, parse_csv_to_objects(LIVE_CSV), "2024-03-03T00:00:00.000Z")
    return store


@pytest.fixture
def archive_path(mock_config, cache_store, tmp_path):
    path = str(tmp_path / "historical.json")
    parsed = parse_csv_to_objects(ARCHIVE_CSV)
    cache_store.save_archive(path, {"headers": parsed.headers, "rows": parsed.rows})
    mock_config.historical_archive_path = path
    return path


@pytest.fixture
def overrides(mock_config):
    return OverridesStore(mock_config)


class TestDatasetLoader:
    """Test DatasetLoader.load."""

    def test_load_live_snapshot(self, mock_config, cache_store, overrides):
        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides).load())

        assert [r.id for r in dataset.reviews] == ["1", "2"]
        assert [r.source for r in dataset.reviews] == ["google", "yelp"]
        assert {a.id for a in dataset.agents} == {"jane", "bob"}
        assert [d.id for d in dataset.departments] == ["general"]
        assert dataset.counts_by_source == {"live": 2}
        assert dataset.last_updated == "2024-03-03T00:00:00.000Z"

    def test_merges_historical_archive(self, mock_config, cache_store, overrides, archive_path):
        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides).load())

        assert len(dataset.reviews) == 4
        assert dataset.counts_by_source == {"live": 2, "historical": 2}
        assert {a.id for a in dataset.agents} == {"jane", "bob", "kim"}
        kim = [r for r in dataset.reviews if r.agent_id == "kim"][0]
        assert kim.rating == 2

    def test_dedupe_by_external_id(self, mock_config, cache_store, overrides, archive_path):
        mock_config.dedupe_by_external_id = True
        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides).load())
        assert [r.id for r in dataset.reviews] == ["1", "2", "3"]

    def test_missing_snapshot_gives_empty_dataset(self, mock_config, overrides):
        dataset = asyncio.run(DatasetLoader(mock_config, CacheStore(mock_config), overrides).load())
        assert dataset.reviews == []
        assert dataset.last_updated is None

    def test_local_hidden_agents_excluded(self, mock_config, cache_store, overrides):
        overrides.hide_agent("bob")

        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides).load())

        assert [r.agent_id for r in dataset.reviews] == ["jane"]
        assert [a.id for a in dataset.agents] == ["jane"]
        assert dataset.hidden_agents == ["bob"]

    def test_row_store_hidden_agents_merged(self, mock_config, cache_store, overrides):
        overrides.hide_agent("bob")
        row_store = Mock(spec=RowStoreClient)
        row_store.get_hidden_agents.return_value = ["jane", "bob"]

        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides, row_store).load())

        assert dataset.reviews == []
        assert dataset.hidden_agents == ["bob", "jane"]

    def test_row_store_failure_falls_back_to_local(self, mock_config, cache_store, overrides):
        row_store = Mock(spec=RowStoreClient)
        row_store.get_hidden_agents.side_effect = psycopg2.OperationalError("connection refused")

        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides, row_store).load())

        assert len(dataset.reviews) == 2

    def test_department_overrides_applied(self, mock_config, cache_store, overrides):
        overrides.save_agent_department("jane", "sales")
        overrides.save_custom_department(Department(id="sales", name="Sales"))

        dataset = asyncio.run(DatasetLoader(mock_config, cache_store, overrides).load())

        jane = [a for a in dataset.agents if a.id == "jane"][0]
        assert jane.department_id == "sales"
        assert [r.department_id for r in dataset.reviews] == ["sales", "general"]
        assert [(d.id, d.name) for d in dataset.departments] == [("general", "General"), ("sales", "Sales")]

    def test_row_store_created_when_host_configured(self, mock_config):
        mock_config.postgres_host = "db.example.com"
        loader = DatasetLoader(mock_config)
        assert isinstance(loader.row_store, RowStoreClient)

    def test_close_closes_row_store(self, mock_config):
        row_store = Mock(spec=RowStoreClient)
        DatasetLoader(mock_config, row_store=row_store).close()
        row_store.close.assert_called_once()


class TestDatasetMemo:
    """Test the TTL memo."""

    def test_memoized_within_ttl(self, mock_config, cache_store, overrides):
        loader = DatasetLoader(mock_config, cache_store, overrides)
        first = asyncio.run(loader.load(now=1000.0))
        cache_store.save_snapshot("Agent\n", parse_csv_to_objects("Agent\n"), "2024-04-01T00:00:00.000Z")

        second = asyncio.run(loader.load(now=1299.0))

        assert second.reviews == first.reviews
        assert second.last_updated == "2024-03-03T00:00:00.000Z"

    def test_rebuilt_after_ttl(self, mock_config, cache_store, overrides):
        loader = DatasetLoader(mock_config, cache_store, overrides)
        asyncio.run(loader.load(now=1000.0))
        cache_store.save_snapshot("Agent\n", parse_csv_to_objects("Agent\n"), "2024-04-01T00:00:00.000Z")

        second = asyncio.run(loader.load(now=1300.0))

        assert second.reviews == []
        assert second.last_updated == "2024-04-01T00:00:00.000Z"

    def test_caller_mutation_does_not_reach_memo(self, mock_config, cache_store, overrides):
        """Clearing a loaded list leaves later readers untouched."""
        loader = DatasetLoader(mock_config, cache_store, overrides)
        first = asyncio.run(loader.load(now=1000.0))
        first.reviews.clear()
        first.agents.clear()
        first.counts_by_source["live"] = 0

        second = asyncio.run(loader.load(now=1001.0))

        assert first is not second
        assert len(second.reviews) == 2
        assert len(second.agents) == 2
        assert second.counts_by_source["live"] == 2

    def test_refresh_forces_rebuild(self, mock_config, cache_store, overrides):
        loader = DatasetLoader(mock_config, cache_store, overrides)
        first = asyncio.run(loader.load(now=1000.0))
        overrides.hide_agent("bob")
        loader.refresh()
        second = asyncio.run(loader.load(now=1001.0))
        assert first is not second
        assert len(second.reviews) == 1

    def test_readers_keep_their_copy(self, mock_config, cache_store, overrides):
        """A sync after load does not change the memoized dataset."""
        loader = DatasetLoader(mock_config, cache_store, overrides)
        dataset = asyncio.run(loader.load(now=1000.0))
        cache_store.save_snapshot("Agent\n", parse_csv_to_objects("Agent\n"), "2024-04-01T00:00:00.000Z")

        assert asyncio.run(loader.load(now=1001.0)).reviews == dataset.reviews
        assert len(dataset.reviews) == 2
