"""
CosmoCard Backend — Google Sheets Collaborator
================================================

What:  Reads and writes the cards sheet and the users sheet.
Why:   Non-engineering stakeholders work from the spreadsheet, so every card
       is exported there at fixed column positions (see sheet_layout).
How:   google-api-python-client v4 `spreadsheets.values` requests, executed
       on the thread pool. Writes are range updates addressed by row number
       and layout field; values are written RAW so a full-row read returns
       exactly what was written.

Lookups:
    find_row_by_card_id is a linear scan of column B. The registry keeps the
    row number of each card, so the scan is only used when the registry does
    not know it (legacy rows, batch sweep). An unknown id returns None.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from googleapiclient.errors import HttpError
from starlette.concurrency import run_in_threadpool

from cosmocard.config import settings
from cosmocard.exceptions import UpstreamError
from cosmocard.services import sheet_layout as layout
from cosmocard.services.google_auth import TRANSPORT_ERRORS, GoogleClients, google_clients

logger = logging.getLogger(__name__)

_ROW_NUMBER_RE = re.compile(r"![A-Z]+(\d+)")


@dataclass
class SheetRow:
    row_number: int
    data: Dict[str, str] = field(default_factory=dict)


def parse_row_number(updated_range: str) -> int:
    """Row number from an append response range such as "'Карточки'!A5:U5"."""
    match = _ROW_NUMBER_RE.search(updated_range or "")
    if not match:
        raise UpstreamError(
            service="sheets",
            message="Could not determine the appended row number",
            context={"updated_range": updated_range},
        )
    return int(match.group(1))


class SheetsService:
    def __init__(self, clients: Optional[GoogleClients] = None):
        self._clients = clients if clients is not None else google_clients

    @property
    def spreadsheet_id(self) -> str:
        return settings.google_sheets_id

    def _values(self) -> Any:
        return self._clients.sheets.spreadsheets().values()

    async def _execute(self, request: Any, action: str) -> Any:
        try:
            return await run_in_threadpool(
                request.execute, http=self._clients.authorized_http()
            )
        except HttpError as e:
            logger.error("Sheets %s failed: %s", action, e)
            raise UpstreamError(
                service="sheets",
                message=f"Google Sheets {action} failed: {e}",
                context={"status": getattr(e.resp, "status", None)},
            ) from e
        except TRANSPORT_ERRORS as e:
            logger.error("Sheets %s failed: %s: %s", action, type(e).__name__, e)
            raise UpstreamError(
                service="sheets",
                message=f"Google Sheets {action} failed: {type(e).__name__}",
                context={"error": str(e)},
            ) from e

    # ── Cards sheet ───────────────────────────────────────────────────────

    async def append_card_row(self, values: Mapping[str, object]) -> int:
        """Append a full card row and return its 1-based row number."""
        row = layout.to_row(values)
        request = self._values().append(
            spreadsheetId=self.spreadsheet_id,
            range=layout.full_range(settings.cards_sheet_name, len(layout.CARD_FIELDS)),
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [row]},
        )
        response = await self._execute(request, "append card row")
        row_number = parse_row_number(response.get("updates", {}).get("updatedRange", ""))
        logger.info("Appended card %s at sheet row %d", values.get("card_id"), row_number)
        return row_number

    async def get_rows(self, sheet_name: Optional[str] = None, width: Optional[int] = None) -> List[List[str]]:
        sheet = sheet_name or settings.cards_sheet_name
        request = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=layout.full_range(sheet, width or len(layout.CARD_FIELDS)),
        )
        response = await self._execute(request, "read rows")
        return response.get("values", [])

    async def find_row_by_card_id(self, card_id: str) -> Optional[SheetRow]:
        rows = await self.get_rows()
        card_index = layout.CARD_FIELDS.index("card_id")
        # Row 1 is the header
        for offset, row in enumerate(rows[1:], start=2):
            if len(row) > card_index and row[card_index] == card_id:
                return SheetRow(row_number=offset, data=layout.from_row(row))
        return None

    async def read_row(self, row_number: int) -> Dict[str, str]:
        first = layout.CARD_FIELDS[0]
        last = layout.CARD_FIELDS[-1]
        request = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=layout.field_range(settings.cards_sheet_name, row_number, first, last),
        )
        response = await self._execute(request, "read row")
        values = response.get("values", [])
        return layout.from_row(values[0] if values else [])

    async def update_fields(
        self,
        row_number: int,
        first_field: str,
        last_field: str,
        values: Mapping[str, object],
    ) -> None:
        """Write the consecutive fields first_field..last_field of one row."""
        fields = layout.fields_between(first_field, last_field)
        request = self._values().update(
            spreadsheetId=self.spreadsheet_id,
            range=layout.field_range(settings.cards_sheet_name, row_number, first_field, last_field),
            valueInputOption="RAW",
            body={"values": [layout.to_row(values, fields)]},
        )
        await self._execute(request, f"update {first_field}..{last_field}")

    async def update_cell(self, row_number: int, field_name: str, value: object) -> None:
        await self.update_fields(row_number, field_name, field_name, {field_name: value})

    async def update_product_name(self, row_number: int, product_name: str) -> None:
        await self.update_cell(row_number, "product_name", product_name)

    async def update_label_info(self, row_number: int, label_link: str, label_info: str) -> None:
        await self.update_fields(
            row_number,
            "label_link",
            "label_info",
            {"label_link": label_link, "label_info": label_info},
        )

    async def update_purpose_and_application(
        self, row_number: int, purpose: str, application: str
    ) -> None:
        await self.update_fields(
            row_number,
            "purpose",
            "application",
            {"purpose": purpose, "application": application},
        )

    async def update_inci(self, row_number: int, inci_text: str, inci_doc_link: str) -> None:
        await self.update_fields(
            row_number,
            "inci_text",
            "inci_doc_link",
            {"inci_text": inci_text, "inci_doc_link": inci_doc_link},
        )

    async def update_ai_compositions(self, row_number: int, values: Mapping[str, object]) -> None:
        """Columns K..P: active ingredients, booklet and full composition, RU and EN."""
        await self.update_fields(row_number, layout.AI_FIELDS[0], layout.AI_FIELDS[-1], values)

    async def clear_row(self, row_number: int) -> None:
        request = self._values().clear(
            spreadsheetId=self.spreadsheet_id,
            range=layout.field_range(
                settings.cards_sheet_name, row_number, layout.CARD_FIELDS[0], layout.CARD_FIELDS[-1]
            ),
            body={},
        )
        await self._execute(request, "clear row")
        logger.info("Cleared sheet row %d", row_number)

    # ── Users sheet ───────────────────────────────────────────────────────

    async def append_user_row(self, values: Mapping[str, object]) -> int:
        request = self._values().append(
            spreadsheetId=self.spreadsheet_id,
            range=layout.full_range(settings.users_sheet_name, len(layout.USER_FIELDS)),
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [layout.to_row(values, layout.USER_FIELDS)]},
        )
        response = await self._execute(request, "append user row")
        return parse_row_number(response.get("updates", {}).get("updatedRange", ""))

    # ── Structure ─────────────────────────────────────────────────────────

    async def ensure_structure(self) -> None:
        """Create missing tabs and write header rows where row 1 is empty."""
        spreadsheets = self._clients.sheets.spreadsheets()
        meta = await self._execute(
            spreadsheets.get(spreadsheetId=self.spreadsheet_id, fields="sheets.properties.title"),
            "read structure",
        )
        existing = {s["properties"]["title"] for s in meta.get("sheets", [])}

        wanted = {
            settings.cards_sheet_name: layout.CARD_HEADERS,
            settings.users_sheet_name: layout.USER_HEADERS,
        }
        missing = [name for name in wanted if name not in existing]
        if missing:
            await self._execute(
                spreadsheets.batchUpdate(
                    spreadsheetId=self.spreadsheet_id,
                    body={"requests": [{"addSheet": {"properties": {"title": name}}} for name in missing]},
                ),
                "add sheets",
            )
            logger.info("Created sheets: %s", ", ".join(missing))

        for name, headers in wanted.items():
            await self._ensure_headers(name, headers)

    async def _ensure_headers(self, sheet_name: str, headers: Sequence[str]) -> None:
        header_range = f"{layout.quote_sheet(sheet_name)}!A1:{layout.column_letter(len(headers) - 1)}1"
        response = await self._execute(
            self._values().get(spreadsheetId=self.spreadsheet_id, range=header_range),
            "read headers",
        )
        if response.get("values"):
            return
        await self._execute(
            self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=header_range,
                valueInputOption="RAW",
                body={"values": [list(headers)]},
            ),
            "write headers",
        )
        logger.info("Wrote header row for sheet '%s'", sheet_name)


sheets_service = SheetsService()
