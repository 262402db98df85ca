"""Telegram notifications for status changes, sent through the Bot HTTP API."""
import html
import os
from typing import List, Optional, Sequence

import requests

from video_status_monitor.models import (
    FieldChange,
    Priority,
    StatusChange,
    StatusField,
)

TELEGRAM_API_URL = "https://api.telegram.org"

FIELD_LABELS = {
    StatusField.MAIN_STATUS: "Main Status",
    StatusField.SCRIPT_APPROVED: "Script Approval",
    StatusField.VOICE_GENERATION_STATUS: "Voice Generation Status",
    StatusField.VIDEO_EDITING_STATUS: "Video Editing Status",
}

FIELD_ICONS = {
    StatusField.MAIN_STATUS: "📌",
    StatusField.SCRIPT_APPROVED: "📝",
    StatusField.VOICE_GENERATION_STATUS: "🎙️",
    StatusField.VIDEO_EDITING_STATUS: "🎞️",
}

PRIORITY_ICONS = {
    Priority.CRITICAL: "🚨",
    Priority.HIGH: "🔴",
    Priority.MEDIUM: "🟡",
    Priority.NORMAL: "⚪",
}


def _display(value: Optional[str]) -> str:
    if value is None:
        return "(not set)"
    if value == "":
        return "(blank)"
    return html.escape(value)


def _links(
    master_sheet_url: Optional[str] = None,
    workbook_url: Optional[str] = None,
    drive_folder: Optional[str] = None,
) -> str:
    links: List[str] = []
    if workbook_url:
        links.append(f'📋 <a href="{workbook_url}">View Video Details</a>')
    if drive_folder:
        links.append(f'📁 <a href="{drive_folder}">View Drive Folder</a>')
    if master_sheet_url:
        links.append(f'📊 <a href="{master_sheet_url}">View Master Sheet</a>')
    return "\n\n" + "\n".join(links) if links else ""


def build_status_change_message(
    change: StatusChange,
    status_field: StatusField,
    field_change: FieldChange,
    priority: Priority,
    master_sheet_url: Optional[str] = None,
) -> str:
    drive_folder = (
        change.current.drive_folder
        if status_field is StatusField.VIDEO_EDITING_STATUS
        else None
    )
    message = (
        f"{FIELD_ICONS[status_field]} <b>{FIELD_LABELS[status_field]} Changed</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        f"🔄 {_display(field_change.old)} → {_display(field_change.new)}\n"
        f"{PRIORITY_ICONS[priority]} Priority: {priority.value}"
    )
    return message + _links(
        master_sheet_url, change.current.detail_workbook_url, drive_folder
    )


def build_status_changes_summary(
    changes: Sequence[StatusChange], master_sheet_url: Optional[str] = None
) -> str:
    lines = [f"📊 <b>Status Changes Summary</b>\n\n{len(changes)} videos changed:"]
    for change in changes:
        transitions = ", ".join(
            f"{FIELD_LABELS[f]}: {_display(c.old)} → {_display(c.new)}"
            for f, c in change.changes.items()
        )
        lines.append(f"• {change.video_id} - {html.escape(change.title)}: {transitions}")
    return "\n".join(lines) + _links(master_sheet_url)


def build_final_completion_message(
    change: StatusChange, master_sheet_url: Optional[str] = None
) -> str:
    message = (
        "🎉 <b>Video Completed</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        "✅ Video editing marked as completed"
    )
    return message + _links(
        master_sheet_url,
        change.current.detail_workbook_url,
        change.current.drive_folder,
    )


def build_regeneration_started_message(
    change: StatusChange, master_sheet_url: Optional[str] = None
) -> str:
    message = (
        "🔄 <b>Script Regeneration Started</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        "📝 Script marked as Needs Changes, status reset to Processing"
    )
    return message + _links(master_sheet_url, change.current.detail_workbook_url)


def build_backup_created_message(change: StatusChange, file_name: str) -> str:
    return (
        "💾 <b>Script Backup Created</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        f"📄 Backup: {html.escape(file_name)}\n"
        "🕒 Before regeneration"
    )


def build_voice_script_created_message(
    change: StatusChange, workflow_error: Optional[str] = None
) -> str:
    if workflow_error:
        return (
            "⚠️ <b>Voice Script Created (Fallback)</b>\n\n"
            f"🎬 {change.video_id} - {html.escape(change.title)}\n"
            "📄 File: voice_script.txt in the Drive folder\n\n"
            "<i>Full workflow failed, but voice script created successfully</i>\n"
            f"🔧 {html.escape(workflow_error)}"
        ) + _links(drive_folder=change.current.drive_folder)
    return (
        "✅ <b>Voice Script Created</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        "📄 File: voice_script.txt in the Drive folder\n\n"
        "💡 <i>Ready for voice generation</i>"
    ) + _links(drive_folder=change.current.drive_folder)


def build_voice_script_failed_message(change: StatusChange, error: str) -> str:
    return (
        "❌ <b>Voice Script Creation Failed</b>\n\n"
        f"🎬 {change.video_id} - {html.escape(change.title)}\n"
        f"🔄 Error: {html.escape(error)}\n\n"
        "🔧 Manual intervention required"
    )


def build_error_message(

    title: str, error: str, stage: str, master_sheet_url: Optional[str] = None
) -> str:
    message = (
        "❌ <b>Processing Error</b>\n\n"
        f"🎬 <b>Video:</b> {html.escape(title)}\n"
        f"🔧 <b>Stage:</b> {html.escape(stage)}\n"
        f"⚠️ <b>Error:</b> {html.escape(error)}"
    )
    return message + _links(master_sheet_url)


class TelegramNotifier:
    """Sends HTML messages to a single chat. Never raises from notify()."""

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.bot_token = bot_token or os.environ.get("TELEGRAM_BOT_TOKEN")
        self.chat_id = chat_id or os.environ.get("TELEGRAM_CHAT_ID")
        if timeout is None:
            timeout = float(os.environ.get("TELEGRAM_REQUEST_TIMEOUT", "30"))
        self.timeout = timeout
        if not self.bot_token or not self.chat_id:
            print(
                "Warning: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not found. "
                "Notifications will fail."
            )

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.bot_token}/{method}"

    def notify(self, message: str, context: Optional[dict] = None) -> bool:
        """
        Sends a message. Returns False on any failure instead of raising,
        so a notification problem never blocks the calling workflow.
        """
        label = (context or {}).get("video_id", "monitor")
        if not self.bot_token or not self.chat_id:
            print(f"Error: Telegram is not configured, message for {label} not sent")
            return False

        try:
            response = requests.post(
                self._url("sendMessage"),
                json={
                    "chat_id": self.chat_id,
                    "text": message,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=self.timeout,
            )
            if response.status_code == 200 and response.json().get("ok"):
                print(f"Telegram sent ({label})")
                return True
            print(
                f"Error sending Telegram message for {label}: "
                f"{response.status_code} {response.text}"
            )
        except Exception as e:
            print(f"Error sending Telegram message for {label}: {e}")
        return False

    def health_check(self) -> bool:
        if not self.bot_token:
            return False
        try:
            response = requests.get(self._url("getMe"), timeout=self.timeout)
            username = response.json().get("result", {}).get("username")
            if response.status_code == 200 and username:
                print(f"Bot: @{username}")
                return True
            print(f"Error: Invalid response from Telegram API: {response.text}")
        except Exception as e:
            print(f"Telegram health check failed: {e}")
        return False
