"""
Google Sheets Storage Implementation

DESIGN DECISION: Each table of the household app maps to one worksheet.
Row 1 holds the column headers; every other row is one record.

TRADEOFFS:
- No joins: splits are joined with their expense (for payer_id) in Python
- No transactions: the conditional split write re-reads the row right
  before writing, which narrows but does not close the race window
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interfaces, so the flows never
know which backend they are talking to.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.config import GoogleSheetsSettings, get_settings
from household_ledger.engine.schedule import is_template_due
from household_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from household_ledger.models.chores import (
    Chore,
    ChoreTemplate,
    RecurrenceUnit,
    RotationCursor,
)
from household_ledger.models.ledger import (
    ExpenseSplitRecord,
    Household,
    Member,
    SettlementRecord,
    SplitUpdate,
    utc_now,
)
from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ChoreStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    HouseholdStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger(__name__)


HOUSEHOLD_COLUMNS = ["id", "name", "admin_id", "timezone", "chore_rotation_order"]

MEMBER_COLUMNS = ["id", "household_id", "full_name", "is_available", "created_at"]

EXPENSE_COLUMNS = ["id", "household_id", "paid_by", "description", "amount", "created_at"]

SPLIT_COLUMNS = ["id", "expense_id", "user_id", "amount_owed", "is_settled", "created_at"]

SETTLEMENT_COLUMNS = [
    "id",
    "household_id",
    "from_user_id",
    "to_user_id",
    "amount",
    "note",
    "created_at",
]

TEMPLATE_COLUMNS = [
    "id",
    "household_id",
    "name",
    "description",
    "is_active",
    "is_recurring",
    "recurring_type",
    "recurring_interval",
    "recurring_start_date",
    "last_created_at",
    "next_creation_date",
    "auto_assign_rotation",
]

CURSOR_COLUMNS = ["household_id", "template_id", "last_assigned_user_id", "updated_at"]

CHORE_COLUMNS = [
    "id",
    "household_id",
    "template_id",
    "name",
    "description",
    "assigned_to",
    "created_by",
    "due_date",
    "recurring_type",
    "recurring_interval",
    "status",
    "created_at",
]

# Column order matches AuditEvent.to_sheets_row()
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "household_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

ROW_PARSE_ERRORS = (ValueError, KeyError, InvalidOperation, json.JSONDecodeError)


def _parse_bool(value: str, default: bool = False) -> bool:
    if value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _parse_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _format_amount(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01")))


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication, worksheet creation and retry logic for
    API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get a worksheet by title, creating it with a header row if missing."""
        if title in self._worksheets:
            return self._worksheets[title]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)

        self._worksheets[title] = sheet
        return sheet

    def read_records(self, title: str, columns: list[str]) -> list[tuple[int, dict[str, str]]]:
        """
        Read every data row as a dict keyed by header.

        Returns (sheet_row_number, record) pairs; row numbers are 1-based
        and start at 2 because row 1 is the header.
        """
        sheet = self.get_worksheet(title, columns)
        rows = sheet.get_all_values()
        if not rows:
            return []

        header = rows[0]
        records = []
        for row_number, row in enumerate(rows[1:], start=2):
            if not row or not any(row):
                continue
            padded = list(row) + [""] * (len(header) - len(row))
            records.append((row_number, dict(zip(header, padded))))
        return records

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def append_row(self, title: str, columns: list[str], row: list) -> None:
        sheet = self.get_worksheet(title, columns)
        sheet.append_row(row, value_input_option="RAW")

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def update_cells(
        self,
        title: str,
        columns: list[str],
        row_number: int,
        values: dict[str, str],
    ) -> None:
        """Overwrite individual cells of one row, addressed by column name."""
        sheet = self.get_worksheet(title, columns)
        header = sheet.row_values(1) or columns
        for name, value in values.items():
            sheet.update_cell(row_number, header.index(name) + 1, value)


class GoogleSheetsHouseholdStorage(
    HouseholdStorageInterface,
    LedgerStorageInterface,
    ChoreStorageInterface,
):
    """
    Google Sheets implementation of the household, ledger and chore
    interfaces.

    Complex fields (the custom rotation order) are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._names = self._client.settings

    def _read(self, title: str, columns: list[str]) -> list[tuple[int, dict[str, str]]]:
        try:
            return self._client.read_records(title, columns)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {title}: {e}")

    def _append(self, title: str, columns: list[str], row: list) -> None:
        try:
            self._client.append_row(title, columns, row)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {title}: {e}")

    def _update(self, title: str, columns: list[str], row_number: int, values: dict) -> None:
        try:
            self._client.update_cells(title, columns, row_number, values)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {title}: {e}")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _record_to_template(record: dict[str, str]) -> ChoreTemplate:
        return ChoreTemplate(
            id=record["id"],
            household_id=record["household_id"] or None,
            name=record["name"],
            description=record["description"] or None,
            is_active=_parse_bool(record["is_active"], default=True),
            is_recurring=_parse_bool(record["is_recurring"]),
            recurring_type=RecurrenceUnit(record["recurring_type"]) if record["recurring_type"] else None,
            recurring_interval=int(record["recurring_interval"]) if record["recurring_interval"] else None,
            recurring_start_date=_parse_datetime(record["recurring_start_date"]),
            last_created_at=_parse_datetime(record["last_created_at"]),
            next_creation_date=_parse_datetime(record["next_creation_date"]),
            auto_assign_rotation=_parse_bool(record["auto_assign_rotation"], default=True),
        )

    @staticmethod
    def _chore_to_row(chore: Chore) -> list:
        return [
            chore.id,
            chore.household_id,
            chore.template_id or "",
            chore.name,
            chore.description or "",
            chore.assigned_to,
            chore.created_by or "",
            _format_datetime(chore.due_date),
            chore.recurring_type.value if chore.recurring_type else "",
            str(chore.recurring_interval) if chore.recurring_interval else "",
            chore.status.value,
            _format_datetime(chore.created_at),
        ]

    # ------------------------------------------------------------------
    # Households
    # ------------------------------------------------------------------

    async def get_household(self, household_id: str) -> Optional[Household]:
        for _, record in self._read(self._names.households_sheet_name, HOUSEHOLD_COLUMNS):
            if record["id"] != household_id:
                continue
            order = record["chore_rotation_order"]
            return Household(
                id=record["id"],
                name=record["name"],
                admin_id=record["admin_id"] or None,
                timezone=record["timezone"] or None,
                chore_rotation_order=json.loads(order) if order else [],
            )
        return None

    async def list_members(self, household_id: str) -> list[Member]:
        members = []
        for _, record in self._read(self._names.members_sheet_name, MEMBER_COLUMNS):
            if record["household_id"] != household_id:
                continue
            members.append(Member(
                id=record["id"],
                household_id=household_id,
                full_name=record["full_name"],
                is_available=_parse_bool(record["is_available"], default=True),
                created_at=_parse_datetime(record["created_at"]),
            ))

        # Rows are appended in creation order; sorting is stable for equal stamps
        members.sort(key=lambda m: m.created_at.timestamp() if m.created_at else 0.0)
        return members

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def list_unsettled_splits(self, household_id: str) -> list[ExpenseSplitRecord]:
        expenses = {
            record["id"]: record
            for _, record in self._read(self._names.expenses_sheet_name, EXPENSE_COLUMNS)
            if record["household_id"] == household_id
        }

        splits = []
        for _, record in self._read(self._names.splits_sheet_name, SPLIT_COLUMNS):
            expense = expenses.get(record["expense_id"])
            if expense is None or _parse_bool(record["is_settled"]):
                continue
            try:
                splits.append(ExpenseSplitRecord(
                    id=record["id"],
                    expense_id=record["expense_id"],
                    payer_id=expense["paid_by"],
                    ower_id=record["user_id"],
                    amount_owed=Decimal(record["amount_owed"]),
                    expense_description=expense["description"] or None,
                    created_at=_parse_datetime(expense["created_at"]),
                ))
            except ROW_PARSE_ERRORS as e:
                logger.warning("malformed_split_row", split_id=record.get("id"), error=str(e))

        # Most recent expense first
        splits.sort(
            key=lambda s: s.created_at.timestamp() if s.created_at else 0.0,
            reverse=True,
        )
        return splits

    async def update_split(self, update: SplitUpdate) -> None:
        title = self._names.splits_sheet_name
        for row_number, record in self._read(title, SPLIT_COLUMNS):
            if record["id"] != update.split_id:
                continue

            try:
                current = Decimal(record["amount_owed"])
            except ROW_PARSE_ERRORS as e:
                raise StorageError(
                    f"Split {update.split_id} has an unreadable amount_owed: {record['amount_owed']!r}"
                ) from e
            if _parse_bool(record["is_settled"]) or current != update.expected_amount_owed:
                raise ConflictError(
                    f"Split {update.split_id} changed since the balance was computed"
                )

            if update.settled:
                values = {"is_settled": "TRUE"}
            else:
                values = {"amount_owed": _format_amount(update.new_amount_owed)}
            self._update(title, SPLIT_COLUMNS, row_number, values)
            return

        raise NotFoundError(f"Split not found: {update.split_id}")

    async def append_settlement(self, record: SettlementRecord) -> None:
        title = self._names.settlements_sheet_name
        if any(r["id"] == str(record.id) for _, r in self._read(title, SETTLEMENT_COLUMNS)):
            raise DuplicateError(f"Settlement already recorded: {record.id}")

        self._append(title, SETTLEMENT_COLUMNS, [
            str(record.id),
            record.household_id or "",
            record.from_member_id,
            record.to_member_id,
            _format_amount(record.amount),
            record.note or "",
            _format_datetime(record.created_at),
        ])

    async def list_settlements(self, household_id: str, limit: int = 100) -> list[SettlementRecord]:
        records = []
        for _, row in self._read(self._names.settlements_sheet_name, SETTLEMENT_COLUMNS):
            if row["household_id"] != household_id:
                continue
            try:
                records.append(SettlementRecord(
                    id=UUID(row["id"]),
                    household_id=household_id,
                    from_member_id=row["from_user_id"],
                    to_member_id=row["to_user_id"],
                    amount=Decimal(row["amount"]),
                    note=row["note"] or None,
                    created_at=_parse_datetime(row["created_at"]) or utc_now(),
                ))
            except ROW_PARSE_ERRORS as e:
                logger.warning("malformed_settlement_row", settlement_id=row.get("id"), error=str(e))

        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    # ------------------------------------------------------------------
    # Chores
    # ------------------------------------------------------------------

    async def list_recurring_templates(
        self,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        templates = []
        for _, record in self._read(self._names.templates_sheet_name, TEMPLATE_COLUMNS):
            if template_id and record["id"] != template_id:
                continue
            if household_id and record["household_id"] != household_id:
                continue
            try:
                template = self._record_to_template(record)
            except ROW_PARSE_ERRORS as e:
                logger.warning("malformed_template_row", template_id=record.get("id"), error=str(e))
                continue

            if template.is_active and template.is_recurring:
                templates.append(template)
        return templates

    async def list_due_templates(
        self,
        now: datetime,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        templates = await self.list_recurring_templates(template_id, household_id)
        return [t for t in templates if is_template_due(t.next_creation_date, now)]

    async def get_template(self, template_id: str) -> Optional[ChoreTemplate]:
        for _, record in self._read(self._names.templates_sheet_name, TEMPLATE_COLUMNS):
            if record["id"] == template_id:
                return self._record_to_template(record)
        return None

    async def update_template_schedule(
        self,
        template_id: str,
        last_created_at: datetime,
        next_creation_date: datetime,
    ) -> None:
        title = self._names.templates_sheet_name
        for row_number, record in self._read(title, TEMPLATE_COLUMNS):
            if record["id"] == template_id:
                self._update(title, TEMPLATE_COLUMNS, row_number, {
                    "last_created_at": _format_datetime(last_created_at),
                    "next_creation_date": _format_datetime(next_creation_date),
                })
                return
        raise NotFoundError(f"Template not found: {template_id}")

    async def get_rotation_cursor(self, household_id: str, template_id: str) -> RotationCursor:
        for _, record in self._read(self._names.cursors_sheet_name, CURSOR_COLUMNS):
            if record["household_id"] == household_id and record["template_id"] == template_id:
                return RotationCursor(
                    household_id=household_id,
                    template_id=template_id,
                    last_assigned_member_id=record["last_assigned_user_id"] or None,
                    updated_at=_parse_datetime(record["updated_at"]) or utc_now(),
                )
        return RotationCursor(household_id=household_id, template_id=template_id)

    async def save_rotation_cursor(self, cursor: RotationCursor) -> None:
        title = self._names.cursors_sheet_name
        for row_number, record in self._read(title, CURSOR_COLUMNS):
            if (
                record["household_id"] == cursor.household_id
                and record["template_id"] == cursor.template_id
            ):
                self._update(title, CURSOR_COLUMNS, row_number, {
                    "last_assigned_user_id": cursor.last_assigned_member_id or "",
                    "updated_at": _format_datetime(cursor.updated_at),
                })
                return

        self._append(title, CURSOR_COLUMNS, [
            cursor.household_id,
            cursor.template_id,
            cursor.last_assigned_member_id or "",
            _format_datetime(cursor.updated_at),
        ])

    async def get_latest_chore_created_at(
        self,
        household_id: str,
        template_id: str,
    ) -> Optional[datetime]:
        latest = None
        for _, record in self._read(self._names.chores_sheet_name, CHORE_COLUMNS):
            if record["household_id"] != household_id or record["template_id"] != template_id:
                continue
            created_at = _parse_datetime(record["created_at"])
            if created_at and (latest is None or created_at > latest):
                latest = created_at
        return latest

    async def insert_chore(self, chore: Chore) -> Chore:
        title = self._names.chores_sheet_name
        if any(r["id"] == chore.id for _, r in self._read(title, CHORE_COLUMNS)):
            raise DuplicateError(f"Chore already exists: {chore.id}")
        self._append(title, CHORE_COLUMNS, self._chore_to_row(chore))
        return chore


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._title = self._client.settings.audit_sheet_name

    @staticmethod
    def _record_to_event(record: dict[str, str]) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(record["event_id"]),
            timestamp=datetime.fromisoformat(record["timestamp"]),
            event_type=AuditEventType(record["event_type"]),
            severity=AuditSeverity(record["severity"]),
            entity_type=record["entity_type"] or None,
            entity_id=record["entity_id"] or None,
            household_id=record["household_id"] or None,
            correlation_id=UUID(record["correlation_id"]) if record["correlation_id"] else None,
            description=record["description"],
            details=json.loads(record["details_json"]) if record["details_json"] else {},
            error_message=record["error_message"] or None,
            is_user_action=_parse_bool(record["is_user_action"]),
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            records = self._client.read_records(self._title, AUDIT_COLUMNS)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for _, record in records:
            try:
                events.append(self._record_to_event(record))
            except ROW_PARSE_ERRORS:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are logged, never raised."""
        try:
            self._client.append_row(self._title, AUDIT_COLUMNS, event.to_sheets_row())
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
