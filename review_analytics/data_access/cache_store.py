"""
File-backed cache for synced review exports, plus the in-memory sync status cache.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from review_analytics.config.settings import Settings
from review_analytics.models.schemas import CacheSnapshot, ParsedSheet, SyncStats, SyncStatus


logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "cached-sheets-data.json"
PARSED_FILE = "cached-sheets-parsed.json"


def count_lines(csv_text: str) -> int:
    """Number of non-blank physical lines in an export."""
    return sum(1 for line in csv_text.split("\n") if line.strip())


class CacheStore:
    """
    Snapshot cache of the last successful sync.

    Every save replaces the files wholesale; concurrent writers race and the
    last one wins.
    """

    def __init__(self, config: Settings):
        self.config = config
        self.cache_dir = config.cache_dir
        self.snapshot_path = os.path.join(self.cache_dir, SNAPSHOT_FILE)
        self.parsed_path = os.path.join(self.cache_dir, PARSED_FILE)

    def _write_json(self, path: str, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _read_json(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save_snapshot(self, csv_text: str, parsed: ParsedSheet, last_updated: str) -> SyncStats:
        """
        Overwrite the raw snapshot and its parsed companion.

        Args:
            csv_text: Raw export text
            parsed: Normalized rows from csv_text
            last_updated: ISO timestamp of this sync

        Returns:
            SyncStats written to the snapshot
        """
        stats = SyncStats(size=len(csv_text), lines=count_lines(csv_text), rows=len(parsed.rows))

        self._write_json(self.parsed_path, {
            "headers": parsed.headers,
            "rows": parsed.rows,
            "lastUpdated": last_updated,
        })
        snapshot = CacheSnapshot(csv=csv_text, last_updated=last_updated, stats=stats)
        self._write_json(self.snapshot_path, snapshot.model_dump(by_alias=True))

        logger.info(f"Saved snapshot ({stats.size} bytes, {stats.rows} rows) to {self.cache_dir}")
        return stats

    def load_snapshot(self) -> Optional[CacheSnapshot]:
        """Load the raw snapshot, or None if no sync has completed yet."""
        data = self._read_json(self.snapshot_path)
        if data is None:
            return None
        return CacheSnapshot.model_validate(data)

    def load_parsed(self) -> Optional[ParsedSheet]:
        """Load the parsed companion of the snapshot, or None if missing."""
        data = self._read_json(self.parsed_path)
        if data is None:
            return None
        return ParsedSheet(headers=data.get("headers", []), rows=data.get("rows", []))

    def previous_row_count(self) -> int:
        """Data-row count recorded by the last sync; 0 if unknown."""
        try:
            snapshot = self.load_snapshot()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read previous snapshot: {e}")
            return 0
        if snapshot is None:
            return 0
        if snapshot.stats.rows is not None:
            return snapshot.stats.rows
        return max(snapshot.stats.lines - 1, 0)

    def save_archive(self, path: str, archive: Dict[str, Any]) -> None:
        """Write a historical archive document."""
        self._write_json(path, archive)
        logger.info(f"Saved archive to {path}")

    def load_archive(self, path: str) -> Optional[ParsedSheet]:
        """Load the rows of a historical archive, or None if missing."""
        data = self._read_json(path)
        if data is None:
            return None
        return ParsedSheet(headers=data.get("headers", []), rows=data.get("rows", []))


@dataclass
class StatusEntry:
    status: SyncStatus
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


class SyncStatusCache:
    """Sync status by sync id. Entries carry an expiry the caller checks."""

    def __init__(self, ttl_seconds: float = 3600):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, StatusEntry] = {}

    def set(self, sync_id: str, status: SyncStatus) -> None:
        self._entries[sync_id] = StatusEntry(status=status, expires_at=time.time() + self.ttl_seconds)

    def get_entry(self, sync_id: str) -> Optional[StatusEntry]:
        return self._entries.get(sync_id)

    def get(self, sync_id: str, now: Optional[float] = None) -> Optional[SyncStatus]:
        """Current status for sync_id, or None if unknown or expired."""
        entry = self._entries.get(sync_id)
        if entry is None or entry.is_expired(now):
            return None
        return entry.status

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop expired entries and return how many were removed."""
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)
