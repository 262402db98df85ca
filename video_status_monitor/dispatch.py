"""Priority classification and follow-up actions for detected status changes."""
import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from video_status_monitor.models import (
    Action,
    ActionOutcome,
    DispatchResult,
    MainStatus,
    Priority,
    ScriptApproved,
    StatusChange,
    StatusField,
    VideoEditingStatus,
    VoiceGenerationStatus,
)
from video_status_monitor.sheets import GoogleSheetsClient
from video_status_monitor.telegram import (
    TelegramNotifier,
    build_backup_created_message,
    build_final_completion_message,
    build_regeneration_started_message,
    build_status_change_message,
    build_voice_script_created_message,
    build_voice_script_failed_message,
)
from video_status_monitor.utils import get_current_timestamp
from video_status_monitor.workflow import WorkflowContinuation

# Main status values that also stamp a dedicated timestamp column
MAIN_STATUS_TIME_COLUMNS = {
    MainStatus.PROCESSING.value: "processingStartedTime",
    MainStatus.COMPLETED.value: "processingCompletedTime",
    MainStatus.ERROR.value: "errorTime",
}

# Values that mean a downstream stage has not been unlocked yet
NOT_UNLOCKED = (None, "", "Not Ready")


def classify_priority(fields: Iterable[StatusField]) -> Priority:
    """First matching rule wins: scriptApproved, mainStatus, voice/editing."""
    changed = set(fields)
    if StatusField.SCRIPT_APPROVED in changed:
        return Priority.CRITICAL
    if StatusField.MAIN_STATUS in changed:
        return Priority.HIGH
    if (
        StatusField.VOICE_GENERATION_STATUS in changed
        or StatusField.VIDEO_EDITING_STATUS in changed
    ):
        return Priority.MEDIUM
    return Priority.NORMAL


def actions_for(status_field: StatusField, new_value: Optional[str]) -> List[Action]:
    """Actions triggered by one field moving to `new_value`."""
    match status_field:
        case StatusField.MAIN_STATUS:
            return [Action.UPDATE_RELATED_COLUMNS, Action.SYNC_WORKFLOW_STATUS]
        case StatusField.SCRIPT_APPROVED:
            if new_value == ScriptApproved.APPROVED:
                return [Action.TRIGGER_APPROVED_SCRIPT_WORKFLOW]
            if new_value == ScriptApproved.NEEDS_CHANGES:
                return [Action.TRIGGER_SCRIPT_REGENERATION]
            return []
        case StatusField.VOICE_GENERATION_STATUS:
            if new_value == VoiceGenerationStatus.COMPLETED:
                return [
                    Action.UPDATE_VOICE_COMPLETION_STATUS,
                    Action.CHECK_VIDEO_EDITING_ELIGIBILITY,
                ]
            return []
        case StatusField.VIDEO_EDITING_STATUS:
            if new_value == VideoEditingStatus.COMPLETED:
                return [
                    Action.UPDATE_VIDEO_COMPLETION_STATUS,
                    Action.NOTIFY_FINAL_COMPLETION,
                ]
            return []
        case _:
            raise ValueError(f"Unknown status field: {status_field}")


def determine_actions(change: StatusChange) -> List[Action]:
    """Union of each changed field's actions, in field order, without duplicates."""
    actions: List[Action] = []
    for status_field, field_change in change.changes.items():
        for action in actions_for(status_field, field_change.new):
            if action not in actions:
                actions.append(action)
    return actions


class Dispatcher:
    """
    Executes the actions for each StatusChange group.

    Actions in one group run sequentially; a failing action is recorded and
    the remaining actions still run. Groups for different videos run
    concurrently.
    """

    def __init__(
        self,
        sheets: GoogleSheetsClient,
        notifier: TelegramNotifier,
        workflow: WorkflowContinuation,
        master_sheet_url: Optional[str] = None,
        timestamp: Callable[[], str] = get_current_timestamp,
    ):
        self.sheets = sheets
        self.notifier = notifier
        self.workflow = workflow
        self.master_sheet_url = master_sheet_url
        self.timestamp = timestamp
        self.handlers = {
            Action.TRIGGER_APPROVED_SCRIPT_WORKFLOW: self._trigger_approved_script,
            Action.TRIGGER_SCRIPT_REGENERATION: self._trigger_script_regeneration,
            Action.UPDATE_VOICE_COMPLETION_STATUS: self._update_voice_completion,
            Action.CHECK_VIDEO_EDITING_ELIGIBILITY: self._check_editing_eligibility,
            Action.UPDATE_VIDEO_COMPLETION_STATUS: self._update_video_completion,
            Action.NOTIFY_FINAL_COMPLETION: self._notify_final_completion,
            Action.UPDATE_RELATED_COLUMNS: self._update_related_columns,
            Action.SYNC_WORKFLOW_STATUS: self._sync_workflow_status,
        }
        # Successful writes per video, collected while its group runs
        self._writes: Dict[str, Dict[str, str]] = {}

    async def dispatch(
        self, change: StatusChange, notify_each: bool = True
    ) -> DispatchResult:
        result = DispatchResult(
            video_id=change.video_id,
            title=change.title,
            priority=classify_priority(change.fields),
            actions=determine_actions(change),
        )
        print(
            f"{change.video_id}: {result.priority.value} change "
            f"({', '.join(f.value for f in change.fields)}), "
            f"{len(result.actions)} actions"
        )

        self._writes[change.video_id] = result.writes
        try:
            for action in result.actions:
                result.outcomes.append(await self._run(action, change))
        finally:
            del self._writes[change.video_id]

        if notify_each:
            result.outcomes.append(await self._notify_status_change(change, result))

        for outcome in result.failed:
            print(f"Error: {change.video_id} {outcome.action.value} failed: {outcome.error}")
        return result

    async def dispatch_all(
        self, changes: Sequence[StatusChange], notify_each: bool = True
    ) -> List[DispatchResult]:
        return list(
            await asyncio.gather(
                *(self.dispatch(change, notify_each) for change in changes)
            )
        )

    async def _run(self, action: Action, change: StatusChange) -> ActionOutcome:
        try:
            success = await self.handlers[action](change)
        except Exception as e:
            return ActionOutcome(action=action, success=False, error=str(e) or repr(e))
        if success is None:
            return ActionOutcome(action=action, success=True, skipped=True)
        if not success:
            return ActionOutcome(
                action=action, success=False, error=f"{action.value} returned failure"
            )
        return ActionOutcome(action=action, success=True)

    async def _update(self, video_id: str, updates: dict, expected=None) -> bool:
        written = await asyncio.to_thread(
            self.sheets.update_fields, video_id, updates, expected
        )
        if written and video_id in self._writes:
            self._writes[video_id].update(updates)
        return written

    async def _notify(self, message: str, change: StatusChange) -> bool:
        return await asyncio.to_thread(
            self.notifier.notify, message, {"video_id": change.video_id}
        )

    async def _continue(self, method, change: StatusChange) -> Optional[bool]:
        # None marks the outcome as skipped
        if not self.workflow.configured:
            print(f"Warning: {change.video_id}: no workflow configured, skipping")
            return None
        return await asyncio.to_thread(method, change.current)

    async def _notify_status_change(
        self, change: StatusChange, result: DispatchResult
    ) -> ActionOutcome:
        sent = True
        for status_field, field_change in change.changes.items():
            message = build_status_change_message(
                change, status_field, field_change, result.priority, self.master_sheet_url
            )
            sent = await self._notify(message, change) and sent
        if sent:
            return ActionOutcome(action=Action.NOTIFY_STATUS_CHANGE, success=True)
        return ActionOutcome(
            action=Action.NOTIFY_STATUS_CHANGE,
            success=False,
            error="Status change notification not delivered",
        )

    async def _trigger_approved_script(self, change: StatusChange) -> bool:
        snapshot = change.current
        updates = {"scriptApprovedTime": self.timestamp()}
        expected = None
        if snapshot.voice_generation_status in NOT_UNLOCKED:
            updates["voiceGenerationStatus"] = VoiceGenerationStatus.NOT_STARTED.value
            expected = {"voiceGenerationStatus": snapshot.voice_generation_status}
        if not await self._update(change.video_id, updates, expected):
            return False
        print(f"{change.video_id}: Script approved, continuing approved script workflow")
        if not self.workflow.configured:
            print(
                f"Warning: {change.video_id}: no workflow configured, "
                "creating the voice script only"
            )
            return await self._create_voice_script(change)
        try:
            if await asyncio.to_thread(
                self.workflow.process_approved_script, change.current
            ):
                return True
            workflow_error = "Approved script workflow returned failure"
        except Exception as e:
            workflow_error = str(e) or repr(e)
        print(f"Error: {change.video_id}: {workflow_error}, creating the voice script only")
        return await self._create_voice_script(change, workflow_error)

    async def _create_voice_script(
        self, change: StatusChange, workflow_error: Optional[str] = None
    ) -> bool:
        try:
            voice_script = await asyncio.to_thread(
                self.sheets.create_voice_script, change.current
            )
        except Exception as e:
            await self._notify(build_voice_script_failed_message(change, str(e)), change)
            raise
        if not voice_script["skipped"]:
            message = build_voice_script_created_message(change, workflow_error)
            if not await self._notify(message, change):
                print(f"Warning: {change.video_id}: voice script notice not delivered")
        return True


    async def _backup_script(self, change: StatusChange) -> None:
        try:
            content = await asyncio.to_thread(
                self.sheets.get_existing_script_content, change.current
            )
            if not content:
                print(f"Warning: {change.video_id}: No existing script content to back up")
                return
            stamp = self.timestamp().replace(":", "-").replace(".", "-")
            file_name = f"voice_script_backup_{stamp}.txt"
            await asyncio.to_thread(
                self.sheets.create_script_backup, change.current, content, file_name
            )
            print(f"{change.video_id}: Script backup created - {file_name}")
            await self._notify(build_backup_created_message(change, file_name), change)
        except Exception as e:
            # A missing backup does not stop regeneration
            print(f"Warning: {change.video_id}: Failed to create script backup: {e}")

    async def _trigger_script_regeneration(
        self, change: StatusChange
    ) -> Optional[bool]:
        await self._backup_script(change)
        updated = await self._update(
            change.video_id,
            {
                "status": MainStatus.PROCESSING.value,
                "scriptApproved": ScriptApproved.PENDING.value,
                "isRegenerating": "true",
                "scriptNeedsChangesTime": self.timestamp(),
            },
            {"scriptApproved": ScriptApproved.NEEDS_CHANGES.value},
        )
        if not updated:
            return False
        message = build_regeneration_started_message(change, self.master_sheet_url)
        if not await self._notify(message, change):
            print(f"Warning: {change.video_id}: regeneration notice not delivered")
        return await self._continue(self.workflow.regenerate_script, change)

    async def _update_voice_completion(self, change: StatusChange) -> bool:
        return await self._update(
            change.video_id, {"voiceCompletedTime": self.timestamp()}
        )

    async def _check_editing_eligibility(self, change: StatusChange) -> bool:
        current = change.current.video_editing_status
        if current not in NOT_UNLOCKED:
            print(f"{change.video_id}: Video editing already at '{current}'")
            return True
        return await self._update(
            change.video_id,
            {"videoEditingStatus": VideoEditingStatus.NOT_STARTED.value},
            {"videoEditingStatus": current},
        )

    async def _update_video_completion(self, change: StatusChange) -> bool:
        return await self._update(
            change.video_id,
            {
                "videoEditingCompletedTime": self.timestamp(),
                "status": MainStatus.COMPLETED.value,
            },
        )

    async def _notify_final_completion(self, change: StatusChange) -> bool:
        return await self._notify(
            build_final_completion_message(change, self.master_sheet_url), change
        )

    async def _update_related_columns(self, change: StatusChange) -> bool:
        now = self.timestamp()
        updates = {"lastEditedTime": now}
        new_status = change.changes[StatusField.MAIN_STATUS].new
        time_column = MAIN_STATUS_TIME_COLUMNS.get(new_status or "")
        if time_column:
            updates[time_column] = now
        return await self._update(change.video_id, updates)

    async def _sync_workflow_status(self, change: StatusChange) -> Optional[bool]:
        return await self._continue(self.workflow.sync_status, change)
