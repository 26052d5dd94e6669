"""Unit tests for ReviewBuilder and its column helpers."""
import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from review_analytics.config.settings import Settings
from review_analytics.parsing.review_builder import (
    ReviewBuilder,
    classify_source,
    find_column,
    parse_rating,
    resolve_columns,
    slugify_agent,
    to_iso_timestamp,
)


@pytest.fixture
def mock_config():
    """Create a mock configuration."""
    config = Mock(spec=Settings)
    config.default_department_id = "general"
    config.default_department_name = "General"
    config.agent_image_host = "https://hello.example.com"
    config.agent_image_fallback_template = "https://hello.example.com/uploads/{name}.png"
    config.website_source_markers = ["example.com"]
    return config


@pytest.fixture
def live_row():
    """A row in the current export layout."""
    return {
        "Review No.": "1042",
        "How did we do?": "5 - Excellent",
        "Entry Date": "2024-03-05 14:30:00",
        "Agent": "Jane Doe!",
        "Source Url": "https://hello.example.com/review/?agent=Jane&imgurl=/uploads/jane.png",
        "Please provide your feedback below.": "Fast and friendly",
        "Name": "Chris",
    }


class TestColumnHelpers:
    """Test the column alias helpers."""

    def test_find_column_exact_and_substring(self):
        headers = ["Review No.", "How did we do?", "Entry Date"]
        assert find_column(headers, ["how did we do?"]) == "How did we do?"
        assert find_column(headers, ["date"]) == "Entry Date"
        assert find_column(headers, ["missing"]) is None

    def test_find_column_alias_order(self):
        """Earlier aliases win over later ones."""
        headers = ["Timestamp", "Entry Date"]
        assert find_column(headers, ["entry date", "timestamp"]) == "Entry Date"

    def test_find_column_earlier_substring_beats_later_exact(self):
        """Within one alias, header order decides; exact matches get no priority."""
        headers = ["Agent Name", "Name"]
        assert find_column(headers, ["name"]) == "Agent Name"

    def test_resolve_columns(self):
        columns = resolve_columns(["Rating", "Date", "Source", "Comment", "Customer Name"])
        assert columns["rating"] == "Rating"
        assert columns["date"] == "Date"
        assert columns["source"] == "Source"
        assert columns["comment"] == "Comment"
        assert columns["name"] == "Customer Name"
        assert columns["review_id"] is None

    @pytest.mark.parametrize("value,expected", [
        ("5", 5),
        ("4 stars", 4),
        (" 3", 3),
        ("", 0),
        (None, 0),
        ("great", 0),
        ("7", 7),
    ])
    def test_parse_rating(self, value, expected):
        assert parse_rating(value) == expected

    @pytest.mark.parametrize("name,expected", [
        ("Jane Doe", "jane_doe"),
        ("Jane  Doe!", "jane_doe"),
        ("O'Brien", "obrien"),
        ("!!!", "unknown"),
    ])
    def test_slugify_agent(self, name, expected):
        assert slugify_agent(name) == expected

    def test_to_iso_timestamp(self):
        value = datetime(2024, 3, 5, 14, 30, 0, 123456, tzinfo=timezone.utc)
        assert to_iso_timestamp(value) == "2024-03-05T14:30:00.123Z"

    def test_to_iso_timestamp_naive_is_utc(self):
        assert to_iso_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00.000Z"

    @pytest.mark.parametrize("url,expected", [
        ("https://www.google.com/maps/review", "google"),
        ("https://yelp.com/biz/x", "yelp"),
        ("https://facebook.com/page", "facebook"),
        ("https://hello.example.com/review", "website"),
        ("https://other.org", "unknown"),
    ])
    def test_classify_source(self, url, expected):
        assert classify_source(url, ["example.com"]) == expected


class TestReviewBuilder:
    """Test ReviewBuilder.build."""

    def test_build_full_row(self, mock_config, live_row):
        """A complete row maps onto review, agent and department."""
        reviews, agents, departments = ReviewBuilder(mock_config).build([live_row])

        review = reviews[0]
        assert review.id == "1042"
        assert review.external_id == "1042"
        assert review.agent_id == "jane_doe"
        assert review.department_id == "general"
        assert review.rating == 5
        assert review.comment == "Chris: Fast and friendly"
        assert review.review_timestamp == "2024-03-05T14:30:00.000Z"
        assert review.source == "website"

        agent = agents[0]
        assert agent.id == "jane_doe"
        assert agent.display_name == "Jane Doe"
        assert agent.image_url == "https://hello.example.com/uploads/jane.png"

        assert [(d.id, d.name) for d in departments] == [("general", "General")]

    def test_missing_review_number_uses_position(self, mock_config, live_row):
        live_row["Review No."] = ""
        reviews, _, _ = ReviewBuilder(mock_config).build([live_row, live_row])
        assert [r.id for r in reviews] == ["review_1", "review_2"]
        assert reviews[0].external_id is None

    def test_invalid_rating_is_retained(self, mock_config, live_row):
        """Rows with an unusable rating are kept with rating 0."""
        live_row["How did we do?"] = ""
        reviews, _, _ = ReviewBuilder(mock_config).build([live_row])
        assert len(reviews) == 1
        assert reviews[0].rating == 0

    def test_missing_agent_is_unknown(self, mock_config):
        reviews, agents, _ = ReviewBuilder(mock_config).build([{"Rating": "4"}])
        assert reviews[0].agent_id == "unknown"
        assert agents[0].display_name == "Unknown"

    def test_unparseable_date_uses_reference(self, mock_config):
        reference = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        reviews, _, _ = ReviewBuilder(mock_config).build(
            [{"Rating": "4", "Date": "not a date"}],
            reference=reference
        )
        assert reviews[0].review_timestamp == "2024-06-01T12:00:00.000Z"

    def test_offset_date_converted_to_utc(self, mock_config):
        reviews, _, _ = ReviewBuilder(mock_config).build([{"Date": "2024-03-05T10:00:00-05:00"}])
        assert reviews[0].review_timestamp == "2024-03-05T15:00:00.000Z"

    @pytest.mark.parametrize("name,feedback,expected", [
        ("Chris", "Great", "Chris: Great"),
        ("Chris", "", "Review by Chris"),
        ("", "Great", "Great"),
        ("", "", ""),
    ])
    def test_comment_composition(self, mock_config, name, feedback, expected):
        reviews, _, _ = ReviewBuilder(mock_config).build([{"Name": name, "Feedback": feedback}])
        assert reviews[0].comment == expected

    def test_fallback_image_when_source_is_not_url(self, mock_config):
        _, agents, _ = ReviewBuilder(mock_config).build([{"Agent": "Dr. Jane Doe!"}])
        assert agents[0].image_url == "https://hello.example.com/uploads/DrJaneDoe.png"

    def test_absolute_imgurl_kept(self, mock_config):
        row = {"Agent": "Sam", "Source": "https://x.org/?imgurl=https://cdn.org/sam.png"}
        _, agents, _ = ReviewBuilder(mock_config).build([row])
        assert agents[0].image_url == "https://cdn.org/sam.png"

    def test_url_without_imgurl_has_no_image(self, mock_config):
        _, agents, _ = ReviewBuilder(mock_config).build([{"Agent": "Sam", "Source": "https://x.org/"}])
        assert agents[0].image_url is None

    def test_agents_deduplicated_first_wins(self, mock_config):
        rows = [
            {"Agent": "Sam", "Source": "https://x.org/?imgurl=https://cdn.org/a.png"},
            {"Agent": "Sam", "Source": "https://x.org/?imgurl=https://cdn.org/b.png"},
        ]
        _, agents, _ = ReviewBuilder(mock_config).build(rows)
        assert len(agents) == 1
        assert agents[0].image_url == "https://cdn.org/a.png"

    def test_mixed_layouts_resolved_per_row(self, mock_config):
        """Rows from exports with different headers each use their own columns."""
        rows = [
            {"Rating": "5", "Date": "2024-01-01"},
            {"How did we do?": "2", "Entry Date": "2023-01-01", "Rating": ""},
        ]
        reviews, _, _ = ReviewBuilder(mock_config).build(rows)
        assert [r.rating for r in reviews] == [5, 2]
        assert reviews[1].review_timestamp.startswith("2023-01-01")
