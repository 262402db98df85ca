from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional


class StatusField(str, Enum):
    """Monitored master sheet fields, in comparison order."""

    MAIN_STATUS = "mainStatus"
    SCRIPT_APPROVED = "scriptApproved"
    VOICE_GENERATION_STATUS = "voiceGenerationStatus"
    VIDEO_EDITING_STATUS = "videoEditingStatus"


class MainStatus(str, Enum):
    NEW = "New"
    PROCESSING = "Processing"
    SCRIPT_SEPARATED = "Script Separated"
    APPROVED = "Approved"
    GENERATING_IMAGES = "Generating Images"
    COMPLETED = "Completed"
    ERROR = "Error"


class ScriptApproved(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    NEEDS_CHANGES = "Needs Changes"


class VoiceGenerationStatus(str, Enum):
    NOT_READY = "Not Ready"
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    NEED_CHANGES = "Need Changes"


class VideoEditingStatus(str, Enum):
    NOT_READY = "Not Ready"
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    FIRST_DRAFT = "First Draft"
    COMPLETED = "Completed"
    PUBLISHED = "Published"


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    NORMAL = "NORMAL"


class Action(str, Enum):
    TRIGGER_APPROVED_SCRIPT_WORKFLOW = "TRIGGER_APPROVED_SCRIPT_WORKFLOW"
    TRIGGER_SCRIPT_REGENERATION = "TRIGGER_SCRIPT_REGENERATION"
    UPDATE_VOICE_COMPLETION_STATUS = "UPDATE_VOICE_COMPLETION_STATUS"
    CHECK_VIDEO_EDITING_ELIGIBILITY = "CHECK_VIDEO_EDITING_ELIGIBILITY"
    UPDATE_VIDEO_COMPLETION_STATUS = "UPDATE_VIDEO_COMPLETION_STATUS"
    NOTIFY_FINAL_COMPLETION = "NOTIFY_FINAL_COMPLETION"
    UPDATE_RELATED_COLUMNS = "UPDATE_RELATED_COLUMNS"
    SYNC_WORKFLOW_STATUS = "SYNC_WORKFLOW_STATUS"
    # Sent after the table actions, never returned by the action lookup
    NOTIFY_STATUS_CHANGE = "NOTIFY_STATUS_CHANGE"


# Telegram-only actions; a failed delivery never holds back the cache
NOTIFICATION_ACTIONS = frozenset(
    {Action.NOTIFY_FINAL_COMPLETION.value, Action.NOTIFY_STATUS_CHANGE.value}
)


# Master sheet ("Videos" tab) column mapping, A=0, B=1, ...
MASTER_COLUMNS = {
    "videoId": 0,
    "youtubeUrl": 1,
    "status": 2,
    "title": 3,
    "channel": 4,
    "duration": 5,
    "viewCount": 6,
    "publishedDate": 7,
    "youtubeVideoId": 8,
    "scriptApproved": 9,
    "voiceGenerationStatus": 10,
    "videoEditingStatus": 11,
    "driveFolder": 12,
    "detailWorkbookUrl": 13,
    "createdTime": 14,
    "lastEditedTime": 15,
    "isRegenerating": 16,
    "scriptApprovedTime": 17,
    "scriptNeedsChangesTime": 18,
    "voiceStartedTime": 19,
    "voiceCompletedTime": 20,
    "videoEditingCompletedTime": 21,
    "processingStartedTime": 22,
    "processingCompletedTime": 23,
    "errorTime": 24,
}

# Master sheet columns mirrored by snapshot attributes
SNAPSHOT_COLUMNS = {
    "status": "main_status",
    "scriptApproved": "script_approved",
    "voiceGenerationStatus": "voice_generation_status",
    "videoEditingStatus": "video_editing_status",
    "lastEditedTime": "last_edited_time",
}

TITLE_UNAVAILABLE = "Title Unavailable"


@dataclass(frozen=True)
class VideoStatusSnapshot:
    """
    One video's monitored fields at fetch time.
    None means the cell was absent from the fetched row; it is never
    coerced to "".
    """

    video_id: str
    title: Optional[str] = None
    main_status: Optional[str] = None
    script_approved: Optional[str] = None
    voice_generation_status: Optional[str] = None
    video_editing_status: Optional[str] = None
    drive_folder: Optional[str] = None
    detail_workbook_url: Optional[str] = None
    last_edited_time: Optional[str] = None

    def get(self, status_field: StatusField) -> Optional[str]:
        if status_field is StatusField.MAIN_STATUS:
            return self.main_status
        if status_field is StatusField.SCRIPT_APPROVED:
            return self.script_approved
        if status_field is StatusField.VOICE_GENERATION_STATUS:
            return self.voice_generation_status
        if status_field is StatusField.VIDEO_EDITING_STATUS:
            return self.video_editing_status
        raise ValueError(f"Unknown status field: {status_field}")

    def with_writes(self, writes: Dict[str, str]) -> "VideoStatusSnapshot":
        """Applies master sheet column writes to the mirrored attributes."""
        values = {
            SNAPSHOT_COLUMNS[column]: value
            for column, value in writes.items()
            if column in SNAPSHOT_COLUMNS
        }
        return replace(self, **values) if values else self



@dataclass(frozen=True)
class FieldChange:
    old: Optional[str]
    new: Optional[str]


@dataclass(frozen=True)
class StatusChange:
    """All surviving field transitions for one video between two snapshots."""

    video_id: str
    title: str
    changes: Dict[StatusField, FieldChange]
    current: VideoStatusSnapshot

    @property
    def fields(self) -> List[StatusField]:
        return list(self.changes)


@dataclass
class ActionOutcome:
    action: Action
    success: bool
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class DispatchResult:
    video_id: str
    title: str
    priority: Priority
    actions: List[Action]
    outcomes: List[ActionOutcome] = field(default_factory=list)
    # Master sheet columns this dispatch wrote successfully
    writes: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> List[Action]:
        return [o.action for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        """True when every non-notification action succeeded."""
        return all(o.action.value in NOTIFICATION_ACTIONS for o in self.failed)
