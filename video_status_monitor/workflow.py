import os
from abc import ABC, abstractmethod
from typing import Optional

import requests

from video_status_monitor.models import VideoStatusSnapshot


class WorkflowContinuation(ABC):
    """Hands a video back to the content pipeline after a human decision."""

    configured = True

    @abstractmethod
    def process_approved_script(self, snapshot: VideoStatusSnapshot) -> bool:
        """Continues an approved script (voice script, thumbnails)."""
        pass

    @abstractmethod
    def regenerate_script(self, snapshot: VideoStatusSnapshot) -> bool:
        """Re-runs script generation for a script marked Needs Changes."""
        pass

    @abstractmethod
    def sync_status(self, snapshot: VideoStatusSnapshot) -> bool:
        """Tells the pipeline about a main status edited in the sheet."""
        pass


class NullWorkflow(WorkflowContinuation):
    """Used when no pipeline endpoint is configured; callers skip it."""

    configured = False

    def process_approved_script(self, snapshot: VideoStatusSnapshot) -> bool:
        return True

    def regenerate_script(self, snapshot: VideoStatusSnapshot) -> bool:
        return True

    def sync_status(self, snapshot: VideoStatusSnapshot) -> bool:
        return True


class WebhookWorkflow(WorkflowContinuation):
    """Posts workflow events to the pipeline's HTTP endpoint."""

    def __init__(self, url: str, timeout: float = 60):
        self.url = url
        self.timeout = timeout

    def _post(self, event: str, snapshot: VideoStatusSnapshot) -> bool:
        payload = {
            "event": event,
            "videoId": snapshot.video_id,
            "title": snapshot.title,
            "status": snapshot.main_status,
            "scriptApproved": snapshot.script_approved,
            "voiceGenerationStatus": snapshot.voice_generation_status,
            "videoEditingStatus": snapshot.video_editing_status,
            "driveFolder": snapshot.drive_folder,
            "detailWorkbookUrl": snapshot.detail_workbook_url,
        }
        response = requests.post(self.url, json=payload, timeout=self.timeout)
        if 200 <= response.status_code < 300:
            print(f"{snapshot.video_id}: workflow event '{event}' accepted")
            return True
        print(
            f"Error: workflow event '{event}' for {snapshot.video_id} failed: "
            f"{response.status_code} {response.text}"
        )
        return False

    def process_approved_script(self, snapshot: VideoStatusSnapshot) -> bool:
        return self._post("approved_script", snapshot)

    def regenerate_script(self, snapshot: VideoStatusSnapshot) -> bool:
        return self._post("regenerate_script", snapshot)

    def sync_status(self, snapshot: VideoStatusSnapshot) -> bool:
        return self._post("sync_status", snapshot)


def get_workflow(url: Optional[str] = None) -> WorkflowContinuation:
    """Builds the workflow continuation from WORKFLOW_WEBHOOK_URL when set."""
    url = url or os.environ.get("WORKFLOW_WEBHOOK_URL")
    if not url:
        print(
            "Warning: WORKFLOW_WEBHOOK_URL not found. "
            "Workflow continuation actions will be skipped."
        )
        return NullWorkflow()
    return WebhookWorkflow(url)
