# review_analytics/config/settings.py
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

class Settings(BaseSettings):
    # Google Sheets API
    google_sheet_id: str = ""
    google_sheet_name: str = "Reviews"
    google_sheet_range: str = "A:Z"
    google_credentials_path: str = str(PROJECT_ROOT / "google-sheets-credentials.json")

    # Public "publish to web" CSV endpoint (fallback when the API is unavailable)
    public_csv_url: str = ""

    # Sync
    sync_timeout_seconds: float = 120.0
    fetch_timeout_seconds: float = 90.0
    skip_unchanged_sync: bool = True
    sync_status_ttl_seconds: int = 3600

    # Cache
    cache_dir: str = str(PROJECT_ROOT / "data")
    historical_archive_path: Optional[str] = None
    dataset_ttl_seconds: int = 300
    dedupe_by_external_id: bool = False

    # Local user overrides
    overrides_path: str = str(PROJECT_ROOT / "data" / "overrides.json")

    # Hosted row-store (PostgreSQL), optional
    postgres_host: Optional[str] = None
    postgres_port: int = 5432
    postgres_database: str = "postgres"
    postgres_username: str = "postgres"
    postgres_password: str = ""
    postgres_sslmode: str = "require"

    # Review building
    default_department_id: str = "general"
    default_department_name: str = "General"
    agent_image_host: str = "https://hello.why57.com"
    agent_image_fallback_template: str = "https://hello.why57.com/wp-content/uploads/2025/08/{name}.png"
    website_source_markers: List[str] = ["why57", "hello."]

    class Config:
        env_file = str(PROJECT_ROOT / ".env")
        case_sensitive = False
