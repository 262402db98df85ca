"""Compares two snapshot sets and reports human-driven status transitions."""
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from video_status_monitor.models import (
    TITLE_UNAVAILABLE,
    FieldChange,
    StatusChange,
    StatusField,
    VideoEditingStatus,
    VideoStatusSnapshot,
    VoiceGenerationStatus,
)

# Transitions written by the system itself; these never notify.
AUTOMATED_TRANSITIONS: FrozenSet[Tuple[StatusField, str, str]] = frozenset(
    {
        (
            StatusField.VOICE_GENERATION_STATUS,
            VoiceGenerationStatus.NOT_READY.value,
            VoiceGenerationStatus.NOT_STARTED.value,
        ),
        (
            StatusField.VIDEO_EDITING_STATUS,
            VideoEditingStatus.NOT_READY.value,
            VideoEditingStatus.NOT_STARTED.value,
        ),
    }
)


def is_automated_transition(
    status_field: StatusField, old: Optional[str], new: Optional[str]
) -> bool:
    """Checks a transition against the automated transitions table."""
    if old is None or new is None:
        return False
    return (status_field, old, new) in AUTOMATED_TRANSITIONS


def _display_title(snapshot: VideoStatusSnapshot) -> str:
    title = (snapshot.title or "").strip()
    return title or TITLE_UNAVAILABLE


def _index_by_video_id(
    snapshots: Sequence[VideoStatusSnapshot],
) -> Dict[str, VideoStatusSnapshot]:
    # First occurrence wins
    indexed: Dict[str, VideoStatusSnapshot] = {}
    for snapshot in snapshots:
        indexed.setdefault(snapshot.video_id, snapshot)
    return indexed


def detect_status_changes(
    current: Sequence[VideoStatusSnapshot], cached: Sequence[VideoStatusSnapshot]
) -> List[StatusChange]:
    """
    Returns one StatusChange per video present in both sets whose monitored
    fields differ, after dropping automated transitions.
    Videos only in `current` are new and videos only in `cached` are ignored.
    """
    cached_by_id = _index_by_video_id(cached)
    status_changes: List[StatusChange] = []

    for video_id, snapshot in _index_by_video_id(current).items():
        previous = cached_by_id.get(video_id)
        if previous is None:
            continue

        changes: Dict[StatusField, FieldChange] = {}
        for status_field in StatusField:
            old = previous.get(status_field)
            new = snapshot.get(status_field)
            if old == new:
                continue
            if is_automated_transition(status_field, old, new):
                continue
            changes[status_field] = FieldChange(old=old, new=new)

        if changes:
            status_changes.append(
                StatusChange(
                    video_id=video_id,
                    title=_display_title(snapshot),
                    changes=changes,
                    current=snapshot,
                )
            )

    return status_changes
