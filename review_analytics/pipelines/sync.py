"""
Sync pipeline: download the review export, normalize it and replace the cached
snapshot, reporting progress through named stages.

Also provides the one-off historical archive import.
"""

import argparse
import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from review_analytics.config.settings import Settings
from review_analytics.data_access.cache_store import CacheStore, SyncStatusCache, count_lines
from review_analytics.data_access.sheets_client import SheetFetchError, SheetsClient
from review_analytics.models.schemas import SyncStage, SyncStats, SyncStatus
from review_analytics.parsing.row_normalizer import AGENT_KEY, parse_csv_to_objects


logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SyncOrchestrator:
    """
    Drives downloading -> processing -> saving -> complete for one sync.

    Status is kept in an injected SyncStatusCache keyed by sync id. Concurrent
    syncs are not coordinated; each tracks under its own id and the last
    snapshot write wins.
    """

    def __init__(
        self,
        config: Settings,
        sheets_client: Optional[SheetsClient] = None,
        cache_store: Optional[CacheStore] = None,
        status_cache: Optional[SyncStatusCache] = None
    ):
        self.config = config
        self.sheets_client = sheets_client or SheetsClient(config)
        self.cache_store = cache_store or CacheStore(config)
        self.status_cache = status_cache or SyncStatusCache(config.sync_status_ttl_seconds)

    def start_sync(self) -> str:
        """Register a new sync and return its id."""
        sync_id = f"sync-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        self._set(sync_id, SyncStage.IDLE, 0, "Starting...")
        return sync_id

    def get_status(self, sync_id: str) -> Optional[SyncStatus]:
        return self.status_cache.get(sync_id)

    def _set(self, sync_id: str, stage: SyncStage, progress: int, message: str, **extra) -> SyncStatus:
        status = SyncStatus(status=stage, progress=progress, message=message, **extra)
        self.status_cache.set(sync_id, status)
        logger.info(f"[{sync_id}] {status.status} {progress}% {message}")
        return status

    async def run(self, sync_id: Optional[str] = None) -> SyncStatus:
        """
        Execute one sync.

        Never raises: any failure, including the download timeout, ends in an
        error status carrying a readable message.

        Args:
            sync_id: Id from start_sync (a new one is registered if omitted)

        Returns:
            Terminal SyncStatus (complete or error)
        """
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        if sync_id is None:
            sync_id = self.start_sync()

        try:
            return await self._run_stages(sync_id)
        except asyncio.TimeoutError:
            message = f"Sync timeout after {self.config.sync_timeout_seconds:g} seconds"
            logger.error(f"[{sync_id}] {message}")
            return self._set(sync_id, SyncStage.ERROR, 0, "Sync failed", error=message)
        except Exception as e:
            logger.error(f"[{sync_id}] Sync failed: {e}", exc_info=True)
            return self._set(sync_id, SyncStage.ERROR, 0, "Sync failed", error=str(e) or type(e).__name__)

    async def _run_stages(self, sync_id: str) -> SyncStatus:
        self._set(sync_id, SyncStage.DOWNLOADING, 0, "Starting...")
        self._set(sync_id, SyncStage.DOWNLOADING, 10, "Connecting...")
        self._set(sync_id, SyncStage.DOWNLOADING, 30, "Downloading...")

        csv_text = await asyncio.wait_for(
            self.sheets_client.fetch_csv(),
            timeout=self.config.sync_timeout_seconds
        )

        total_lines = count_lines(csv_text)
        data_rows = max(total_lines - 1, 0)
        logger.info(f"[{sync_id}] Export has {total_lines} lines ({data_rows} data rows)")

        if self.config.skip_unchanged_sync:
            previous = self.cache_store.previous_row_count()
            if previous > 0 and data_rows == previous:
                logger.info(f"[{sync_id}] No new rows, cache left untouched")
                return self._set(
                    sync_id, SyncStage.COMPLETE, 100, f"Already up to date ({data_rows} rows)",
                    last_updated=_now_iso(),
                    stats=SyncStats(size=len(csv_text), lines=total_lines, rows=data_rows)
                )

        self._set(sync_id, SyncStage.PROCESSING, 60, f"Processing {data_rows} rows...")
        parsed = parse_csv_to_objects(csv_text)

        self._set(sync_id, SyncStage.SAVING, 90, "Saving...")
        last_updated = _now_iso()
        stats = await asyncio.to_thread(self.cache_store.save_snapshot, csv_text, parsed, last_updated)

        return self._set(
            sync_id, SyncStage.COMPLETE, 100, "Complete!",
            last_updated=last_updated,
            stats=stats
        )


def import_historical(
    config: Settings,
    spreadsheet_id: str,
    output_path: Optional[str] = None,
    sheets_client: Optional[SheetsClient] = None,
    cache_store: Optional[CacheStore] = None
) -> Dict[str, Any]:
    """
    Download the largest tab of a legacy spreadsheet and save it as an archive.

    Args:
        config: Application settings
        spreadsheet_id: Legacy spreadsheet key
        output_path: Archive file (default: historical_archive_path, then
            <cache_dir>/historical-reviews.json)

    Returns:
        The archive document that was written
    """
    sheets_client = sheets_client or SheetsClient(config)
    cache_store = cache_store or CacheStore(config)
    output_path = (
        output_path
        or config.historical_archive_path
        or f"{config.cache_dir}/historical-reviews.json"
    )

    tabs = [tab for tab in sheets_client.list_worksheets(spreadsheet_id) if tab[1] > 1]
    if not tabs:
        raise SheetFetchError(f"Spreadsheet {spreadsheet_id} has no tab with data")
    sheet_name, row_count, _ = max(tabs, key=lambda tab: tab[1])
    logger.info(f"Selected tab '{sheet_name}' ({row_count} rows)")

    csv_text = sheets_client.fetch_api_csv(spreadsheet_id=spreadsheet_id, sheet_name=sheet_name)
    if not csv_text:
        raise SheetFetchError(f"No data returned for tab '{sheet_name}'")

    parsed = parse_csv_to_objects(csv_text)
    agents = {row.get(AGENT_KEY) for row in parsed.rows if row.get(AGENT_KEY)}
    logger.info(f"Parsed {len(parsed.rows)} rows with {len(agents)} unique agents")

    archive = {
        "source": "historical",
        "sheetId": spreadsheet_id,
        "sheetName": sheet_name,
        "downloadedAt": _now_iso(),
        "stats": {
            "totalRows": len(parsed.rows),
            "uniqueAgents": len(agents),
            "sizeBytes": len(csv_text),
            "columns": len(parsed.headers),
        },
        "headers": parsed.headers,
        "rows": parsed.rows,
        "rawCsv": csv_text,
    }
    cache_store.save_archive(output_path, archive)
    return archive


def main():
    """Main entry point for running a sync with CLI arguments."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Sync the review export into the local cache.'
    )
    parser.add_argument(
        '--historical-sheet-id',
        type=str,
        help='Import the largest tab of this legacy spreadsheet as a historical archive instead'
    )
    parser.add_argument(
        '--output',
        type=str,
        help='Archive path for --historical-sheet-id'
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Rewrite the cache even if the row count is unchanged'
    )

    args = parser.parse_args()

    config = Settings()
    if args.force:
        config.skip_unchanged_sync = False

    if args.historical_sheet_id:
        archive = import_historical(config, args.historical_sheet_id, output_path=args.output)
        print("\n" + "="*60)
        print("HISTORICAL IMPORT RESULTS")
        print("="*60)
        print(f"Sheet: {archive['sheetName']}")
        print(f"Rows: {archive['stats']['totalRows']}")
        print(f"Unique agents: {archive['stats']['uniqueAgents']}")
        print(f"Columns: {archive['stats']['columns']}")
        print("="*60)
        return

    orchestrator = SyncOrchestrator(config)
    status = asyncio.run(orchestrator.run())

    print("\n" + "="*60)
    print("SYNC RESULTS")
    print("="*60)
    print(f"Status: {status.status}")
    print(f"Message: {status.message}")
    if status.error:
        print(f"Error: {status.error}")
    if status.stats:
        print(f"Size: {status.stats.size} bytes")
        print(f"Lines: {status.stats.lines}")
        print(f"Rows: {status.stats.rows}")
    print("="*60)

    if status.status == SyncStage.ERROR.value:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
