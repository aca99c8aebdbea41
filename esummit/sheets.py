"""
Best-effort mirror of users and tickets into a Google spreadsheet.

gspread is synchronous; calls run in a worker thread. Without service
account credentials every call is skipped and reports False / None.
"""

from typing import Any, Callable, Dict, List, Optional
import asyncio
import json
import logging
import os

import gspread

from .helpers import now_ts, to_iso

logger = logging.getLogger(__name__)

GOOGLE_SHEET_ID = os.environ.get("GOOGLE_SHEET_ID", "")
GOOGLE_SERVICE_ACCOUNT_CREDENTIALS = os.environ.get(
    "GOOGLE_SERVICE_ACCOUNT_CREDENTIALS", ""
)

USERS_SHEET = "Users"
TICKETS_SHEET = "Tickets"

WorksheetFactory = Callable[[str], Any]


def _load_credentials(raw: str) -> Optional[Dict[str, Any]]:
    if not raw:
        logger.warning("[Sheets] no Google service account credentials found")
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.error("[Sheets] failed to parse credentials: %s", e)
        return None


class SheetSync:
    def __init__(self, sheet_id: str = GOOGLE_SHEET_ID,
                 credentials: str = GOOGLE_SERVICE_ACCOUNT_CREDENTIALS,
                 worksheet_factory: Optional[WorksheetFactory] = None):
        self.sheet_id = sheet_id
        self._creds = _load_credentials(credentials) if worksheet_factory is None else None
        self._spreadsheet = None
        self.worksheet_factory = worksheet_factory

    @property
    def enabled(self) -> bool:
        return self.worksheet_factory is not None or (
            self._creds is not None and bool(self.sheet_id)
        )

    def _worksheet(self, name: str):
        if self.worksheet_factory is not None:
            return self.worksheet_factory(name)
        if self._spreadsheet is None:
            client = gspread.service_account_from_dict(self._creds)
            self._spreadsheet = client.open_by_key(self.sheet_id)
        return self._spreadsheet.worksheet(name)

    # ---- sync primitives (run in a thread) ----
    def _append(self, sheet: str, values: List[Any]) -> None:
        self._worksheet(sheet).append_row(values, value_input_option="USER_ENTERED")

    def _update(self, sheet: str, row_index: int, column_index: int, value: Any) -> None:
        # gspread is 1-based
        self._worksheet(sheet).update_cell(row_index + 1, column_index + 1, value)

    def _find(self, sheet: str, row_id: str) -> Optional[int]:
        for i, v in enumerate(self._worksheet(sheet).col_values(1)):
            if v == row_id:
                return i
        return None

    # ---- public API ----
    async def append_row(self, sheet: str, values: List[Any]) -> bool:
        if not self.enabled:
            logger.info("[Sheets] skipping sync - no credentials configured")
            return False
        try:
            await asyncio.to_thread(self._append, sheet, values)
        except Exception as e:
            logger.error("[Sheets] append to %s failed: %s", sheet, e)
            return False
        logger.info("[Sheets] appended row to %s", sheet)
        return True

    async def update_cell(self, sheet: str, row_index: int,
                          column_index: int, value: Any) -> bool:
        """Zero-based row/column, as returned by find_row_by_id."""
        if not self.enabled:
            return False
        try:
            await asyncio.to_thread(self._update, sheet, row_index, column_index, value)
        except Exception as e:
            logger.error("[Sheets] update on %s failed: %s", sheet, e)
            return False
        logger.info("[Sheets] updated %s r%d c%d", sheet, row_index, column_index)
        return True

    async def find_row_by_id(self, sheet: str, row_id: str) -> Optional[int]:
        if not self.enabled:
            return None
        try:
            return await asyncio.to_thread(self._find, sheet, row_id)
        except Exception as e:
            logger.error("[Sheets] lookup on %s failed: %s", sheet, e)
            return None

    async def sync_user(self, profile: Dict[str, Any]) -> bool:
        return await self.append_row(USERS_SHEET, [
            profile.get("id"),
            profile.get("full_name") or "",
            profile.get("email") or "",
            profile.get("phone") or "",
            profile.get("college_name") or "",
            profile.get("roll_number") or "",
            profile.get("role") or "external",
            profile.get("created_at") or to_iso(now_ts()),
        ])

    async def sync_ticket(self, ticket: Dict[str, Any],
                          user_name: Optional[str] = None,
                          user_email: Optional[str] = None) -> bool:
        return await self.append_row(TICKETS_SHEET, [
            ticket.get("id"),
            user_name or ticket.get("pending_name") or "",
            user_email or ticket.get("pending_email") or "",
            ticket.get("type"),
            ticket.get("amount"),
            ticket.get("status"),
            ticket.get("pax_count"),
            ticket.get("booking_group_id") or "",
            ticket.get("utr") or "",
            ticket.get("created_at") or to_iso(now_ts()),
        ])
