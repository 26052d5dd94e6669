from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import datetime, timezone
from typing import Optional, List, Dict
from enum import Enum


class ReviewRecord(BaseModel):
    """One customer review, built from a normalized spreadsheet row."""
    id: str
    external_id: Optional[str] = None
    agent_id: Optional[str] = None
    department_id: Optional[str] = None
    rating: int = 0
    comment: str = ""
    review_timestamp: str
    source: str = "unknown"


class Agent(BaseModel):
    """Reviewable entity."""
    id: str
    agent_key: str
    display_name: str
    department_id: str
    image_url: Optional[str] = None


class Department(BaseModel):
    id: str
    name: str


class MetricsSummary(BaseModel):
    """Aggregate counts and averages over a slice of reviews."""
    star_1: int = 0
    star_2: int = 0
    star_3: int = 0
    star_4: int = 0
    star_5: int = 0
    total: int = 0
    avg_rating: float = 0
    percent_5_star: float = 0


class AgentMetrics(MetricsSummary):
    agent_id: str
    agent_name: str = "Unknown"
    department_name: str = "Unknown"
    last_review_date: Optional[str] = None


class DailyMetrics(MetricsSummary):
    date: str


class DateRange(BaseModel):
    """Half-open time window: start is inclusive, end is exclusive."""
    model_config = ConfigDict(populate_by_name=True)

    start: datetime = Field(..., alias="from")
    end: datetime = Field(..., alias="to")
    label: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive datetimes are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ReviewFilters(BaseModel):
    """Dashboard filter state; empty id lists mean "no filter"."""
    date_range: DateRange
    departments: List[str] = Field(default_factory=list)
    agents: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    compare_mode: bool = False


class ParsedSheet(BaseModel):
    """Tokenized and normalized spreadsheet export."""
    headers: List[str] = Field(default_factory=list)
    rows: List[Dict[str, str]] = Field(default_factory=list)


class SyncStage(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


class SyncStats(BaseModel):
    size: int
    lines: int
    rows: Optional[int] = None


class SyncStatus(BaseModel):
    """Progress record for one sync, keyed by sync id."""
    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)

    status: SyncStage
    progress: int = Field(0, ge=0, le=100)
    message: str = ""
    error: Optional[str] = None
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
    stats: Optional[SyncStats] = None


class CacheSnapshot(BaseModel):
    """Raw export cached by the last successful sync."""
    model_config = ConfigDict(populate_by_name=True)

    csv: str = ""
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
    stats: SyncStats = Field(default_factory=lambda: SyncStats(size=0, lines=0))
