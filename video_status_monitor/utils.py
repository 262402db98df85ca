import os
import re
from datetime import datetime
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

import polars as pl

from video_status_monitor.models import DispatchResult

DEFAULT_TIMEZONE = "Asia/Bangkok"


def get_current_timestamp(timezone: Optional[str] = None) -> str:
    """
    Current time in the configured timezone, formatted for the sheet
    (e.g. 2025-01-31T14:05:09).
    """
    tz_name = timezone or os.environ.get("TIMEZONE", DEFAULT_TIMEZONE)
    return datetime.now(ZoneInfo(tz_name)).strftime("%Y-%m-%dT%H:%M:%S")


def column_index_to_letter(index: int) -> str:
    """Converts a 0-based column index to a sheet column letter (0=A, 26=AA)."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative: {index}")
    result = ""
    while index >= 0:
        result = chr(65 + index % 26) + result
        index = index // 26 - 1
    return result


def extract_id_from_url(url: Optional[str]) -> Optional[str]:
    """
    Extracts a Drive file/folder or spreadsheet ID from a Google URL.
    Typical patterns:
    https://docs.google.com/spreadsheets/d/<ID>/edit
    https://drive.google.com/drive/folders/<ID>
    """
    if not url:
        return None
    match = re.search(r"/folders/([a-zA-Z0-9-_]+)|/d/([a-zA-Z0-9-_]+)", url)
    if match:
        return match.group(1) or match.group(2)
    return None


def format_video_title(title: str, max_length: int = 40) -> str:
    if len(title) > max_length:
        return title[:max_length] + "..."
    return title


def results_to_dataframe(results: Sequence[DispatchResult]) -> pl.DataFrame:
    """Flattens dispatch results into one row per attempted action."""
    rows: List[dict] = []
    for result in results:
        if not result.outcomes:
            rows.append(
                {
                    "Video ID": result.video_id,
                    "Title": result.title,
                    "Priority": result.priority.value,
                    "Action": None,
                    "Success": None,
                    "Skipped": None,
                    "Error": None,
                }
            )
            continue
        for outcome in result.outcomes:
            rows.append(
                {
                    "Video ID": result.video_id,
                    "Title": result.title,
                    "Priority": result.priority.value,
                    "Action": outcome.action.value,
                    "Success": outcome.success,
                    "Skipped": outcome.skipped,
                    "Error": outcome.error,
                }
            )

    schema = {
        "Video ID": pl.Utf8,
        "Title": pl.Utf8,
        "Priority": pl.Utf8,
        "Action": pl.Utf8,
        "Success": pl.Boolean,
        "Skipped": pl.Boolean,
        "Error": pl.Utf8,
    }
    return pl.DataFrame(rows, schema=schema)
