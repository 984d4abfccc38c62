"""Google Sheets v4 REST client and the ``RowStore`` built on it.

The client is synchronous (``requests``); ``SheetsRowStore`` offloads every
call to a worker thread so the aiohttp event loop never blocks.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import requests

from .config import Settings
from .errors import RowStoreError
from .row_store import RowStore, quote_sheet
from .schema import column_letter

LOGGER = logging.getLogger(__name__)

_UPDATED_ROW_RE = re.compile(r"![A-Z]+(\d+)")


class SheetsClient:
    """Minimal Sheets API client authenticated with an already issued bearer token."""

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str,
        *,
        base_url: str = "https://sheets.googleapis.com/v4",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not spreadsheet_id:
            raise ValueError("A spreadsheet ID is required")
        if not access_token:
            raise ValueError("A Sheets access token is required")
        self.spreadsheet_id = spreadsheet_id
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sheet_ids: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SheetsClient":
        return cls(
            settings.spreadsheet_id or "",
            settings.sheets_access_token or "",
            base_url=settings.sheets_api_url,
            timeout=settings.sheets_timeout,
        )

    @property
    def _spreadsheet_url(self) -> str:
        return f"{self.base_url}/spreadsheets/{self.spreadsheet_id}"

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            raise RowStoreError(f"Sheets API request failed: {message}", status=response.status_code)
        return response.json() if response.text else {}

    def get_values(self, range_name: str) -> List[List[Any]]:
        payload = self._request(
            "GET",
            f"{self._spreadsheet_url}/values/{quote(range_name, safe='')}",
            params={"valueRenderOption": "UNFORMATTED_VALUE"},
        )
        return payload.get("values", [])

    def append_values(self, range_name: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self._spreadsheet_url}/values/{quote(range_name, safe='')}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [list(row) for row in rows]},
        )

    def batch_update_values(self, data: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self._spreadsheet_url}/values:batchUpdate",
            json={"valueInputOption": "RAW", "data": data},
        )

    def batch_update(self, requests_payload: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self._spreadsheet_url}:batchUpdate",
            json={"requests": requests_payload},
        )

    def get_sheet_id(self, title: str) -> int:
        if title not in self._sheet_ids:
            payload = self._request("GET", self._spreadsheet_url, params={"fields": "sheets.properties"})
            for sheet in payload.get("sheets", []):
                properties = sheet.get("properties", {})
                self._sheet_ids[properties.get("title")] = properties.get("sheetId")
        if title not in self._sheet_ids:
            raise RowStoreError(f"Sheet '{title}' not found in spreadsheet {self.spreadsheet_id}", status=404)
        return self._sheet_ids[title]


class SheetsRowStore(RowStore):
    """``RowStore`` over a Google spreadsheet."""

    def __init__(self, client: SheetsClient) -> None:
        self.client = client

    async def _call(self, description: str, func: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except requests.RequestException as exc:
            LOGGER.error("Sheets %s failed: %s", description, exc)
            raise RowStoreError(f"Sheets {description} failed: {exc}") from exc

    async def read_range(self, range_name: str) -> List[List[Any]]:
        return await self._call("read", self.client.get_values, range_name)

    async def append_rows(self, range_name: str, rows: Sequence[Sequence[Any]]) -> int:
        payload = await self._call("append", self.client.append_values, range_name, rows)
        updated_range = payload.get("updates", {}).get("updatedRange", "")
        match = _UPDATED_ROW_RE.search(updated_range)
        if not match:
            raise RowStoreError(f"Sheets append returned no updated range for {range_name}")
        return int(match.group(1))

    async def write_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None:
        if not cells:
            return
        data = [
            {
                "range": f"{quote_sheet(sheet)}!{column_letter(index)}{row_number}",
                "values": [[value]],
            }
            for index, value in sorted(cells.items())
        ]
        await self._call("update", self.client.batch_update_values, data)

    async def delete_row(self, sheet: str, row_number: int) -> None:
        sheet_id = await self._call("sheet lookup", self.client.get_sheet_id, sheet)
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": row_number - 1,
                    "endIndex": row_number,
                }
            }
        }
        await self._call("delete", self.client.batch_update, [request])
