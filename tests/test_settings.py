"""Unit tests for application settings."""
from review_analytics.config.settings import Settings


class TestSettings:
    """Test Settings defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEET_ID", raising=False)
        monkeypatch.delenv("SYNC_TIMEOUT_SECONDS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.google_sheet_name == "Reviews"
        assert settings.sync_timeout_seconds == 120.0
        assert settings.skip_unchanged_sync is True
        assert settings.dedupe_by_external_id is False
        assert settings.default_department_id == "general"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_SHEET_ID", "sheet-from-env")
        monkeypatch.setenv("sync_timeout_seconds", "30")
        settings = Settings(_env_file=None)

        assert settings.google_sheet_id == "sheet-from-env"
        assert settings.sync_timeout_seconds == 30.0
