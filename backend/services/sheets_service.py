# backend/services/sheets_service.py
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence
from googleapiclient.errors import HttpError

from errors import EmptyInput, ExportFailed, PermissionDenied
from services.drive_service import REMOTE_ERRORS

logger = logging.getLogger(__name__)

HEADERS = ['File Name', 'Uploader Name', 'Email', 'Form', 'Size', 'Date', 'File URL']
URL_COLUMN = 6
INITIAL_ROWS = 500
CHUNK_SIZE = 2000
SHEET_TITLE = 'Sheet1'
MONTHS = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')

HEADER_FORMAT = {
    'backgroundColor': {'red': 0.2, 'green': 0.4, 'blue': 0.8},
    'textFormat': {'foregroundColor': {'red': 1, 'green': 1, 'blue': 1}, 'bold': True, 'fontSize': 10},
    'horizontalAlignment': 'CENTER',
}

def format_size(num_bytes) -> str:
    try:
        num_bytes = float(num_bytes or 0)
    except (TypeError, ValueError):
        return '0 MB'
    if num_bytes <= 0:
        return '0 MB'
    mb = num_bytes / 1024 / 1024
    return '< 0.01 MB' if mb < 0.01 else f'{mb:.2f} MB'

def _parse_date(value):
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed

def format_date(value) -> str:
    """Formats an ISO timestamp as e.g. 'Jan 15, 2024' regardless of locale."""
    if not value:
        return ''
    parsed = _parse_date(value)
    if parsed is None:
        return ''
    return f"{MONTHS[parsed.month - 1]} {parsed.day}, {parsed.year}"

def submission_row(sub: dict) -> list:
    return [
        sub.get('fileName') or '',
        sub.get('submitterName') or '',
        sub.get('submitterEmail') or '',
        sub.get('formTitle') or 'Unknown',
        format_size(sub.get('fileSize') or 0),
        format_date(sub.get('submittedAt') or sub.get('createdAt') or ''),
        sub.get('fileUrl') or '',
    ]

def export_form_name(submissions: Sequence[dict], form_id: Optional[str] = None) -> str:
    titles = {s.get('formTitle') for s in submissions if s.get('formTitle') and s.get('formTitle') != 'Unknown'}
    if len(titles) == 1:
        return titles.pop()
    if form_id:
        return submissions[0].get('formTitle') or 'Unknown Form'
    return 'All Forms'

def spreadsheet_title(form_name: str, today: Optional[datetime] = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"{form_name} Exports - {today:%d/%m/%Y}"

def sheet_url(spreadsheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit"

def _cell(value: str, header: bool = False) -> dict:
    cell = {'userEnteredValue': {'stringValue': str(value or '')}}
    if header:
        cell['userEnteredFormat'] = HEADER_FORMAT
    return cell

def _is_permission_error(error: Exception) -> bool:
    if not isinstance(error, HttpError):
        return False
    status = getattr(getattr(error, 'resp', None), 'status', None)
    if str(status) == '403':
        return True
    message = str(error).lower()
    return 'permission' in message or 'access' in message

def export_submissions(service, submissions: Sequence[dict], form_id: Optional[str] = None) -> dict:
    """Creates a spreadsheet holding one row per submission.

    The header row is styled and frozen. Links in the File URL column and
    column widths are fixed up afterwards; failures there are only logged.
    """
    if not submissions:
        raise EmptyInput('No submissions provided')

    rows = [submission_row(s) for s in submissions]
    title = spreadsheet_title(export_form_name(submissions, form_id))
    try:
        spreadsheet = service.spreadsheets().create(body={
            'properties': {'title': title},
            'sheets': [{
                'properties': {
                    'sheetId': 0,
                    'title': SHEET_TITLE,
                    'gridProperties': {
                        'rowCount': max(1000, len(rows) + 10),
                        'columnCount': len(HEADERS),
                        'frozenRowCount': 1,
                    },
                },
            }],
        }).execute()
        spreadsheet_id = spreadsheet.get('spreadsheetId')
        if not spreadsheet_id:
            raise ExportFailed('Failed to export to Google Sheet', details='Failed to create spreadsheet')

        initial = rows[:INITIAL_ROWS]
        service.spreadsheets().batchUpdate(spreadsheetId=spreadsheet_id, body={'requests': [{
            'updateCells': {
                'range': {
                    'sheetId': 0, 'startRowIndex': 0, 'endRowIndex': len(initial) + 1,
                    'startColumnIndex': 0, 'endColumnIndex': len(HEADERS),
                },
                'rows': [{'values': [_cell(h, header=True) for h in HEADERS]}]
                        + [{'values': [_cell(v) for v in row]} for row in initial],
                'fields': 'userEnteredValue,userEnteredFormat',
            },
        }]}).execute()

        remaining = rows[INITIAL_ROWS:]
        chunks = [remaining[i:i + CHUNK_SIZE] for i in range(0, len(remaining), CHUNK_SIZE)]
        if chunks:
            logger.info("Appending %d remaining rows in %d chunks", len(remaining), len(chunks))
            data, start_row = [], INITIAL_ROWS + 2
            for chunk in chunks:
                data.append({'range': f'{SHEET_TITLE}!A{start_row}', 'values': chunk})
                start_row += len(chunk)
            service.spreadsheets().values().batchUpdate(
                spreadsheetId=spreadsheet_id, body={'valueInputOption': 'RAW', 'data': data},
            ).execute()
    except REMOTE_ERRORS as error:
        logger.error("Error exporting to Google Sheet: %s", error)
        if _is_permission_error(error):
            raise PermissionDenied('PERMISSION_ERROR: Please reconnect your Google account to export to Google Sheets.')
        raise ExportFailed('Failed to export to Google Sheet', details=str(error))

    _link_urls(service, spreadsheet_id, rows)
    _autoresize(service, spreadsheet_id)

    logger.info("Exported %d submissions to spreadsheet %s", len(rows), spreadsheet_id)
    return {'sheetId': spreadsheet_id, 'sheetUrl': sheet_url(spreadsheet_id), 'rowCount': len(rows)}

def is_link(value) -> bool:
    return str(value or '').strip().lower().startswith(('http://', 'https://'))

def link_runs(rows: list) -> list:
    """Groups consecutive http(s) File URL cells as (first sheet row, values) pairs.

    Any other value keeps the RAW text written with the rows, so a cell such
    as ``=HYPERLINK(...)`` is never parsed as a formula.
    """
    runs, current, start = [], [], None
    for sheet_row, row in enumerate(rows, start=2):
        if is_link(row[URL_COLUMN]):
            if not current:
                start = sheet_row
            current.append([row[URL_COLUMN]])
        elif current:
            runs.append((start, current))
            current = []
    if current:
        runs.append((start, current))
    return runs

def _link_urls(service, spreadsheet_id: str, rows: list):
    try:
        for start, values in link_runs(rows):
            service.spreadsheets().values().update(
                spreadsheetId=spreadsheet_id,
                range=f'{SHEET_TITLE}!G{start}:G{start + len(values) - 1}',
                valueInputOption='USER_ENTERED',
                body={'values': values},
            ).execute()
    except REMOTE_ERRORS as error:
        logger.error("Error formatting File URL column: %s", error)

def _autoresize(service, spreadsheet_id: str):
    try:
        service.spreadsheets().batchUpdate(spreadsheetId=spreadsheet_id, body={'requests': [{
            'autoResizeDimensions': {'dimensions': {
                'sheetId': 0, 'dimension': 'COLUMNS', 'startIndex': 0, 'endIndex': len(HEADERS),
            }},
        }]}).execute()
    except REMOTE_ERRORS as error:
        logger.error("Error applying formatting: %s", error)
