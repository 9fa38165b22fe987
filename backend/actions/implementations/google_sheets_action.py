"""
Google Sheets integration action.

Appends one row per submission through the Sheets v4 API, authenticated
with a service account. The key comes from the node config or from the
key file named by ``GOOGLE_SHEETS_CREDENTIALS``. The discovery client is
synchronous, so API calls run in the default executor.
"""

import asyncio
import json
from typing import Any, Dict, List

import structlog
from google.auth.exceptions import GoogleAuthError, TransportError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from actions.base_action import IntegrationAction, SchemaField
from app.config import get_settings
from workflow.results import Failure, NodeResult
from workflow.state import utcnow

logger = structlog.get_logger(__name__)


# ─── Constants ──────────────────────────────────────────────────

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
DEFAULT_SHEET_NAME = "Sheet1"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ─── Helpers ────────────────────────────────────────────────────

def column_letter(number: int) -> str:
    """Spreadsheet column name for a 1-based index: 1 -> A, 27 -> AA."""
    letters = ""
    while number > 0:
        number, remainder = divmod(number - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return value


def load_credentials(config: Dict[str, Any]) -> service_account.Credentials:
    """Service account credentials from ``service_account_json`` or the key file.

    Raises:
        ValueError: The key is missing or malformed
        OSError: The key file cannot be read
    """
    key = config.get("service_account_json")
    if key:
        info = json.loads(key) if isinstance(key, str) else dict(key)
        return service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)

    path = get_settings().GOOGLE_SHEETS_CREDENTIALS
    if not path:
        raise ValueError("no service account key configured")
    return service_account.Credentials.from_service_account_file(path, scopes=SHEETS_SCOPES)


# ─── Action ─────────────────────────────────────────────────────

class GoogleSheetsAppendAction(IntegrationAction):
    """Append a submission as a row in a Google Sheet.

    Config:
        spreadsheet_id: Spreadsheet id from the sheet URL (required)
        sheet_name: Tab to append to (default: Sheet1)
        service_account_json: Service account key; falls back to GOOGLE_SHEETS_CREDENTIALS
        mapping: ``{column_header: source_path}``; empty sends every submission field
        auto_create_headers: Write the column headers when row 1 is empty (default: true)
        include_timestamp: Prepend a Timestamp column (default: true)
        include_submission_id: Add a Submission ID column (default: true)
        date_format: strftime format for the timestamp
    """

    action_id = "google_sheets_append"
    integration_id = "google_sheets"
    display_name = "Google Sheets Row"
    description = "Append the submission as a row in a Google Sheet"
    icon = "📊"

    def __init__(self, http=None):
        # An httplib2-compatible object replaces the credentialed transport
        self._http = http

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        spreadsheet_id = config.get("spreadsheet_id")
        if not spreadsheet_id:
            return Failure(message="Missing required config: spreadsheet_id")
        sheet_name = str(config.get("sheet_name") or DEFAULT_SHEET_NAME)

        row = self.build_row(config, context)
        if not row:
            return Failure(message="Nothing to append: no columns were produced")

        try:
            service = self._service(config)
        except (ValueError, OSError) as e:
            return Failure(message=f"Google credentials unusable: {e}")

        loop = asyncio.get_running_loop()
        try:
            updates = await loop.run_in_executor(
                None,
                lambda: self._append(
                    service,
                    str(spreadsheet_id),
                    sheet_name,
                    row,
                    bool(config.get("auto_create_headers", True)),
                ),
            )
        except HttpError as e:
            status = int(e.resp.status)
            return Failure(
                message=f"Google Sheets returned {status}" + (f": {e.reason}" if e.reason else ""),
                retryable=self.is_retryable_status(status),
            )
        except (TransportError, OSError) as e:
            return Failure(message=f"Google Sheets request failed: {e}", retryable=True)
        except GoogleAuthError as e:
            return Failure(message=f"Google authentication failed: {e}")

        external_id = updates.get("updatedRange")
        logger.info(
            "google_sheets_row_appended",
            spreadsheet_id=str(spreadsheet_id)[:10],
            sheet=sheet_name,
            range=external_id,
        )
        return self.success(
            external_id,
            spreadsheet_id=str(spreadsheet_id),
            sheet_name=sheet_name,
            updated_rows=updates.get("updatedRows", 1),
        )

    def build_row(self, config: Dict[str, Any], context) -> Dict[str, Any]:
        """Ordered ``{header: cell}`` for one submission."""
        row: Dict[str, Any] = {}
        if config.get("include_timestamp", True):
            row["Timestamp"] = utcnow().strftime(config.get("date_format") or DEFAULT_DATE_FORMAT)
        if config.get("include_submission_id", True):
            row["Submission ID"] = context.get("system.submission_id") or ""

        data = self.submission_data(context)
        mapping = config.get("mapping") or {}
        fields = self.map_fields(data, mapping) if mapping else data
        row.update({str(key): _cell(value) for key, value in fields.items()})
        return row

    def _service(self, config: Dict[str, Any]):
        if self._http is not None:
            return build("sheets", "v4", http=self._http, static_discovery=True)
        return build("sheets", "v4", credentials=load_credentials(config), cache_discovery=False)

    def _append(self, service, spreadsheet_id: str, sheet_name: str, row: Dict[str, Any], headers: bool) -> dict:
        """Synchronous append; returns the ``updates`` block of the response."""
        values = service.spreadsheets().values()
        if headers:
            self._ensure_headers(values, spreadsheet_id, sheet_name, list(row))
        response = values.append(
            spreadsheetId=spreadsheet_id,
            range=f"'{sheet_name}'!A:A",
            valueInputOption="USER_ENTERED",
            insertDataOption="INSERT_ROWS",
            body={"values": [list(row.values())]},
        ).execute()
        return response.get("updates", {})

    @staticmethod
    def _ensure_headers(values, spreadsheet_id: str, sheet_name: str, headers: List[str]) -> None:
        header_range = f"'{sheet_name}'!A1:{column_letter(len(headers))}1"
        existing = values.get(spreadsheetId=spreadsheet_id, range=header_range).execute()
        if existing.get("values"):
            return
        values.update(
            spreadsheetId=spreadsheet_id,
            range=header_range,
            valueInputOption="RAW",
            body={"values": [headers]},
        ).execute()

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("spreadsheet_id", "text", "Spreadsheet ID", required=True),
            SchemaField("sheet_name", "text", "Sheet Name", default=DEFAULT_SHEET_NAME),
            SchemaField("service_account_json", "textarea", "Service Account JSON"),
            SchemaField("mapping", "mapping", "Column Mapping"),
            SchemaField("auto_create_headers", "checkbox", "Create headers", default=True),
            SchemaField("include_timestamp", "checkbox", "Include timestamp", default=True),
            SchemaField("include_submission_id", "checkbox", "Include submission ID", default=True),
            SchemaField("date_format", "text", "Date Format", default=DEFAULT_DATE_FORMAT),
        ]


GOOGLE_SHEETS_ACTION_TYPES = {
    "google_sheets_append": GoogleSheetsAppendAction,
}
