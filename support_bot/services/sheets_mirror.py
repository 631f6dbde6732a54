"""Spreadsheet replica of the tickets table.

The mirror is for people looking at a sheet, never a source of truth: every
public call catches and logs its own failures so that nothing here can undo a
ticket that is already committed to the database.
"""
import datetime
from abc import ABC, abstractmethod
from zoneinfo import ZoneInfo

from support_bot.errors import MirrorError
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import TicketRecord, TicketStatus

logger = get_logger(__name__)

STATUS_COLUMN = "H"
TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"


def ticket_row(ticket: TicketRecord, timezone: str = "UTC") -> list[str]:
    """Sheet columns of a ticket. opened_at is stored as naive UTC and shown in `timezone`."""
    opened_at = ticket.opened_at.replace(tzinfo=datetime.timezone.utc).astimezone(ZoneInfo(timezone))
    return [
        ticket.protocol,
        opened_at.strftime(TIMESTAMP_FORMAT),
        ticket.owner.display_name or "N/A",
        ticket.owner.email or "N/A",
        ticket.department,
        ticket.subject,
        ticket.description,
        ticket.status.value,
        ", ".join(a.url for a in ticket.attachments),
    ]


class TicketMirror(ABC):
    @abstractmethod
    def append_ticket_row(self, ticket: TicketRecord) -> None: ...

    @abstractmethod
    def update_status_cell(self, protocol: str, new_status: TicketStatus) -> None: ...


class NullMirror(TicketMirror):
    def append_ticket_row(self, ticket: TicketRecord) -> None:
        logger.debug(f"Spreadsheet not configured, skipping row for {ticket.protocol}")

    def update_status_cell(self, protocol: str, new_status: TicketStatus) -> None:
        logger.debug(f"Spreadsheet not configured, skipping status of {protocol}")


class RowLocator(ABC):
    @abstractmethod
    def find_row(self, protocol: str) -> int | None:
        """1-based sheet row holding `protocol`, or None."""


class ColumnScanLocator(RowLocator):
    """Reads the whole protocol column and scans it. Row 1 is the header."""

    def __init__(self, sheets_service, spreadsheet_id: str, sheet_prefix: str = ""):
        self.sheets_service = sheets_service
        self.spreadsheet_id = spreadsheet_id
        self.sheet_prefix = sheet_prefix

    def find_row(self, protocol: str) -> int | None:
        response = (
            self.sheets_service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_prefix}A:A")
            .execute()
        )
        rows = response.get("values", [])
        for index, row in enumerate(rows):
            if index == 0:
                continue
            if row and row[0] == protocol:
                return index + 1
        return None


class GoogleSheetsMirror(TicketMirror):
    def __init__(self, sheets_service, spreadsheet_id: str, range_name: str = "A:I", locator: RowLocator | None = None,
                 timezone: str = "UTC"):
        self.sheets_service = sheets_service
        self.spreadsheet_id = spreadsheet_id
        self.range_name = range_name
        self.timezone = timezone
        self.sheet_prefix = range_name.split("!")[0] + "!" if "!" in range_name else ""
        self.locator = locator or ColumnScanLocator(sheets_service, spreadsheet_id, self.sheet_prefix)

    def append_ticket_row(self, ticket: TicketRecord) -> None:
        try:
            self._append(ticket)
            logger.info(f"Ticket {ticket.protocol} added to spreadsheet")
        except MirrorError as e:
            logger.error(e.message, exc_info=e.__cause__)

    def update_status_cell(self, protocol: str, new_status: TicketStatus) -> None:
        try:
            if self._update_status(protocol, new_status):
                logger.info(f"Spreadsheet status of {protocol} set to {new_status.value}")
            else:
                logger.warning(f"Ticket {protocol} not found in spreadsheet, status not updated")
        except MirrorError as e:
            logger.error(e.message, exc_info=e.__cause__)

    def _append(self, ticket: TicketRecord):
        try:
            self._values().append(
                spreadsheetId=self.spreadsheet_id,
                range=self.range_name,
                valueInputOption="RAW",
                body={"values": [ticket_row(ticket, self.timezone)]},
            ).execute()
        except Exception as e:
            raise MirrorError(f"Could not append {ticket.protocol} to spreadsheet: {e}") from e

    def _update_status(self, protocol: str, new_status: TicketStatus) -> bool:
        try:
            row = self.locator.find_row(protocol)
            if row is None:
                return False
            self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{self.sheet_prefix}{STATUS_COLUMN}{row}",
                valueInputOption="RAW",
                body={"values": [[new_status.value]]},
            ).execute()
            return True
        except Exception as e:
            raise MirrorError(f"Could not update status of {protocol} in spreadsheet: {e}") from e

    def _values(self):
        return self.sheets_service.spreadsheets().values()
