import io
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from video_status_monitor.models import MASTER_COLUMNS, VideoStatusSnapshot
from video_status_monitor.utils import (
    column_index_to_letter,
    extract_id_from_url,
    get_current_timestamp,
)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]
CREDS_FILE = Path.home() / ".google_client_secret.json"
TOKEN_FILE = Path.home() / ".google_client_token.json"

MASTER_SHEET_NAME = "Videos"
MASTER_RANGE = f"{MASTER_SHEET_NAME}!A:{column_index_to_letter(max(MASTER_COLUMNS.values()))}"
VIDEO_INFO_SHEET = "Video Info"
CLEAN_VOICE_SCRIPT_LABEL = "CLEAN VOICE SCRIPT"
VOICE_SCRIPT_FILE_NAME = "voice_script.txt"

# API, transport and credential refresh failures while reading the sheet
FETCH_ERRORS = (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError)


class SnapshotFetchError(Exception):
    """The master sheet could not be read; no snapshot set was produced."""


def get_creds() -> Credentials:
    creds = None
    if TOKEN_FILE.exists():
        creds = Credentials.from_authorized_user_file(str(TOKEN_FILE), SCOPES)
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            if not CREDS_FILE.exists():
                raise FileNotFoundError(
                    f"Client secrets not found at {CREDS_FILE.absolute()}"
                )
            flow = InstalledAppFlow.from_client_secrets_file(str(CREDS_FILE), SCOPES)
            creds = flow.run_local_server(port=0)
        TOKEN_FILE.write_text(creds.to_json())
    return creds


def _cell(row: List[str], column: str) -> Optional[str]:
    # The Sheets API drops trailing empty cells, so a short row means "not set"
    index = MASTER_COLUMNS[column]
    if index < len(row):
        return row[index]
    return None


def parse_snapshot_row(row: List[str]) -> Optional[VideoStatusSnapshot]:
    """Builds a snapshot from a master sheet row, or None if it has no videoId."""
    video_id = _cell(row, "videoId")
    if not video_id or not video_id.strip():
        return None
    return VideoStatusSnapshot(
        video_id=video_id.strip(),
        title=_cell(row, "title"),
        main_status=_cell(row, "status"),
        script_approved=_cell(row, "scriptApproved"),
        voice_generation_status=_cell(row, "voiceGenerationStatus"),
        video_editing_status=_cell(row, "videoEditingStatus"),
        drive_folder=_cell(row, "driveFolder"),
        detail_workbook_url=_cell(row, "detailWorkbookUrl"),
        last_edited_time=_cell(row, "lastEditedTime"),
    )


class GoogleSheetsClient:
    """Master sheet access for status monitoring."""

    def __init__(self, master_sheet_id: Optional[str] = None, creds=None):
        if master_sheet_id is None:
            try:
                master_sheet_id = os.environ["GOOGLE_MASTER_SHEET_ID"]
            except KeyError:
                raise ValueError("GOOGLE_MASTER_SHEET_ID not found") from None
        self.master_sheet_id = master_sheet_id
        self.creds = creds if creds is not None else get_creds()
        self.sheets_service = build("sheets", "v4", credentials=self.creds)
        self.drive_service = build("drive", "v3", credentials=self.creds)
        # googleapiclient transports are not thread safe
        self._lock = threading.RLock()

    @property
    def master_sheet_url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.master_sheet_id}"

    def _get_master_rows(self) -> List[List[str]]:
        with self._lock:
            response = (
                self.sheets_service.spreadsheets()
                .values()
                .get(spreadsheetId=self.master_sheet_id, range=MASTER_RANGE)
                .execute()
            )
        return response.get("values", [])

    def fetch_all_video_snapshots(self) -> List[VideoStatusSnapshot]:
        """
        Reads every tracked video from the master sheet.
        Rows without a videoId are skipped; duplicate videoIds keep the first row.
        Raises SnapshotFetchError when the sheet cannot be read.
        """
        try:
            rows = self._get_master_rows()
        except FETCH_ERRORS as e:
            raise SnapshotFetchError(f"Failed to read master sheet: {e}") from e

        snapshots: List[VideoStatusSnapshot] = []
        seen: set[str] = set()
        # Row 1 is the header
        for row_number, row in enumerate(rows[1:], start=2):
            snapshot = parse_snapshot_row(row)
            if snapshot is None:
                if any(cell.strip() for cell in row if isinstance(cell, str)):
                    print(f"Warning: Skipping row {row_number} with no Video ID")
                continue
            if snapshot.video_id in seen:
                print(
                    f"Warning: Duplicate Video ID {snapshot.video_id} "
                    f"in row {row_number}, keeping the first row"
                )
                continue
            seen.add(snapshot.video_id)
            snapshots.append(snapshot)

        return snapshots

    def find_video_row(self, video_id: str) -> Optional[Tuple[int, List[str]]]:
        """Returns (1-based row number, row values) for a Video ID."""
        for index, row in enumerate(self._get_master_rows()):
            if (_cell(row, "videoId") or "").strip() == video_id:
                return index + 1, row
        return None

    def update_fields(
        self,
        video_id: str,
        updates: Dict[str, str],
        expected: Optional[Dict[str, Optional[str]]] = None,
    ) -> bool:
        """
        Writes several master sheet columns for one video in a single batch.
        When `expected` is given, the row is re-read first and nothing is
        written if any of those columns changed since the snapshot was taken.
        """
        with self._lock:
            found = self.find_video_row(video_id)
            if not found:
                raise ValueError(f"Video not found: {video_id}")
            row_number, row = found

            for column, expected_value in (expected or {}).items():
                actual = _cell(row, column)
                if (actual or "") != (expected_value or ""):
                    print(
                        f"Warning: {video_id} {column} is now '{actual}' "
                        f"(expected '{expected_value}'), skipping update"
                    )
                    return False

            data = []
            for column, value in updates.items():
                if column not in MASTER_COLUMNS:
                    print(f"Warning: Unknown field name: {column}, skipping")
                    continue
                letter = column_index_to_letter(MASTER_COLUMNS[column])
                data.append(
                    {
                        "range": f"{MASTER_SHEET_NAME}!{letter}{row_number}",
                        "values": [[value]],
                    }
                )

            if not data:
                return True

            self.sheets_service.spreadsheets().values().batchUpdate(
                spreadsheetId=self.master_sheet_id,
                body={"valueInputOption": "USER_ENTERED", "data": data},
            ).execute()

        print(f"Updated {len(data)} fields for {video_id}: {', '.join(updates)}")
        return True

    def get_existing_script_content(
        self, snapshot: VideoStatusSnapshot
    ) -> Optional[str]:
        """Reads the clean voice script from the video's detail workbook."""
        workbook_id = extract_id_from_url(snapshot.detail_workbook_url)
        if not workbook_id:
            print(f"Warning: No detail workbook for {snapshot.video_id}")
            return None

        with self._lock:
            response = (
                self.sheets_service.spreadsheets()
                .values()
                .get(spreadsheetId=workbook_id, range=f"{VIDEO_INFO_SHEET}!A1:B20")
                .execute()
            )
        for row in response.get("values", []):
            if len(row) > 1 and row[0] == CLEAN_VOICE_SCRIPT_LABEL and row[1]:
                return row[1]
        return None

    def create_script_backup(
        self, snapshot: VideoStatusSnapshot, script_content: str, file_name: str
    ) -> Optional[str]:
        """Uploads a voice script backup into the video's Drive folder."""
        folder_id = extract_id_from_url(snapshot.drive_folder)
        if not folder_id:
            raise ValueError(f"Drive folder not found for video: {snapshot.video_id}")

        content = (
            f"BACKUP - Voice Script for {snapshot.title or 'Unknown Title'}\n"
            f"Generated: {get_current_timestamp()}\n"
            f"Video ID: {snapshot.video_id}\n"
            "Reason: Script regeneration requested\n\n"
            "========================================\n\n"
            f"{script_content}\n\n"
            "========================================\n"
            "END OF BACKUP - Original script preserved before regeneration"
        )
        fh = io.BytesIO(content.encode("utf-8"))
        media = MediaIoBaseUpload(fh, mimetype="text/plain", resumable=True)
        file_metadata = {"name": file_name, "parents": [folder_id]}

        with self._lock:
            file = (
                self.drive_service.files()
                .create(body=file_metadata, media_body=media, fields="id, webViewLink")
                .execute()
            )
        return file.get("webViewLink")

    def create_voice_script(self, snapshot: VideoStatusSnapshot) -> dict:
        """
        Uploads the clean voice script as voice_script.txt into the video's
        Drive folder. An existing voice_script.txt is kept and returned with
        skipped=True.
        """
        folder_id = extract_id_from_url(snapshot.drive_folder)
        if not folder_id:
            raise ValueError(f"Drive folder not found for video: {snapshot.video_id}")

        try:
            with self._lock:
                existing = (
                    self.drive_service.files()
                    .list(
                        q=(
                            f"name='{VOICE_SCRIPT_FILE_NAME}' and "
                            f"'{folder_id}' in parents and trashed=false"
                        ),
                        fields="files(id, name, webViewLink)",
                    )
                    .execute()
                    .get("files", [])
                )
        except HttpError as e:
            print(
                f"Warning: Failed to check for an existing voice script for "
                f"{snapshot.video_id}, creating it: {e}"
            )
            existing = []
        if existing:
            print(f"Voice script already exists for {snapshot.video_id}, skipping")
            return {**existing[0], "skipped": True}

        script_content = self.get_existing_script_content(snapshot)
        if not script_content:
            raise ValueError(f"No clean voice script available for {snapshot.video_id}")

        fh = io.BytesIO(script_content.strip().encode("utf-8"))
        media = MediaIoBaseUpload(fh, mimetype="text/plain", resumable=True)
        file_metadata = {"name": VOICE_SCRIPT_FILE_NAME, "parents": [folder_id]}

        with self._lock:
            file = (
                self.drive_service.files()
                .create(body=file_metadata, media_body=media, fields="id, name, webViewLink")
                .execute()
            )
        print(f"Voice script created for {snapshot.video_id}: {file.get('webViewLink')}")
        return {**file, "skipped": False}


    def health_check(self) -> dict:
        try:
            with self._lock:
                self.sheets_service.spreadsheets().get(
                    spreadsheetId=self.master_sheet_id
                ).execute()
            return {"status": "healthy", "service": "GoogleSheets"}
        except Exception as e:
            return {"status": "unhealthy", "service": "GoogleSheets", "error": str(e)}
