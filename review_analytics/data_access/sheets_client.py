# review_analytics/data_access/sheets_client.py
"""
Spreadsheet source client.

Downloads the review export either through the Google Sheets API (service
account) or, when that is unavailable, from the public "publish to web" CSV
endpoint. Both paths return the same CSV text.
"""

import asyncio
import logging
import os
from typing import List, Optional, Tuple

import gspread
import httpx
from google.oauth2.service_account import Credentials

from review_analytics.config.settings import Settings
from review_analytics.parsing.csv_tokenizer import rows_to_csv


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]


class SheetFetchError(RuntimeError):
    """Raised when the review export cannot be downloaded."""


class SheetsClient:
    """Google Sheets client with a public CSV fallback."""

    def __init__(self, config: Settings):
        self.config = config
        self.gc = None

    def has_api_access(self) -> bool:
        """True when a sheet id and a credentials file are configured."""
        return bool(self.config.google_sheet_id) and os.path.exists(self.config.google_credentials_path)

    def connect(self) -> None:
        """Authorize the service account."""
        creds = Credentials.from_service_account_file(
            self.config.google_credentials_path,
            scopes=SCOPES
        )
        self.gc = gspread.authorize(creds)

    def fetch_api_csv(
        self,
        spreadsheet_id: Optional[str] = None,
        sheet_name: Optional[str] = None,
        cell_range: Optional[str] = None
    ) -> str:
        """
        Download one worksheet through the Sheets API as CSV text.

        Args:
            spreadsheet_id: Spreadsheet key (default from config)
            sheet_name: Worksheet title (default from config)
            cell_range: A1 range; the configured range applies only to the
                configured sheet, other sheets are read whole

        Returns:
            CSV text built from the formatted cell values
        """
        if not self.gc:
            self.connect()

        if spreadsheet_id is None and sheet_name is None and cell_range is None:
            cell_range = self.config.google_sheet_range
        spreadsheet_id = spreadsheet_id or self.config.google_sheet_id
        sheet_name = sheet_name or self.config.google_sheet_name

        try:
            worksheet = self.gc.open_by_key(spreadsheet_id).worksheet(sheet_name)
            values = worksheet.get_values(cell_range) if cell_range else worksheet.get_values()
        except gspread.exceptions.GSpreadException as e:
            raise SheetFetchError(f"Failed to download from Google Sheets: {e}") from e

        logger.info(f"Sheets API returned {len(values)} rows from {sheet_name}")
        return rows_to_csv(values)

    def list_worksheets(self, spreadsheet_id: str) -> List[Tuple[str, int, int]]:
        """
        List the tabs of a spreadsheet.

        Returns:
            List of (title, row_count, col_count) tuples
        """
        if not self.gc:
            self.connect()

        try:
            worksheets = self.gc.open_by_key(spreadsheet_id).worksheets()
        except gspread.exceptions.GSpreadException as e:
            raise SheetFetchError(f"Failed to read spreadsheet metadata: {e}") from e

        return [(ws.title, ws.row_count, ws.col_count) for ws in worksheets]

    async def fetch_public_csv(self, url: Optional[str] = None) -> str:
        """
        Download the published CSV export.

        Args:
            url: CSV endpoint (default from config)

        Returns:
            CSV text
        """
        url = url or self.config.public_csv_url
        if not url:
            raise SheetFetchError("No public CSV URL configured")

        headers = {
            "Accept": "text/csv,text/plain,*/*",
            "Cache-Control": "no-cache",
        }
        try:
            async with httpx.AsyncClient(follow_redirects=True, timeout=self.config.fetch_timeout_seconds) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SheetFetchError(f"Failed to download CSV: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SheetFetchError(f"Failed to download CSV: {e}") from e

        logger.info(f"Downloaded public CSV: {len(response.text)} bytes")
        return response.text

    async def fetch_csv(self) -> str:
        """
        Download the review export, preferring the Sheets API.

        Falls back to the public CSV endpoint when API access is not
        configured or the API call fails.
        """
        if self.has_api_access():
            try:
                return await asyncio.to_thread(self.fetch_api_csv)
            except Exception as e:
                logger.warning(f"Sheets API download failed, falling back to public CSV: {e}")
        else:
            logger.info("Sheets API not configured, using public CSV endpoint")

        return await self.fetch_public_csv()
