"""One poll cycle: fetch, diff against the cache, dispatch, update the cache."""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from video_status_monitor.cache import StatusCache
from video_status_monitor.differ import detect_status_changes
from video_status_monitor.dispatch import (
    Dispatcher,
    classify_priority,
    determine_actions,
)
from video_status_monitor.models import (
    Action,
    ActionOutcome,
    DispatchResult,
    StatusChange,
    VideoStatusSnapshot,
)
from video_status_monitor.sheets import GoogleSheetsClient, SnapshotFetchError
from video_status_monitor.telegram import (
    TelegramNotifier,
    build_error_message,
    build_status_changes_summary,
)
from video_status_monitor.workflow import get_workflow

DEFAULT_SUMMARY_THRESHOLD = 3


class CacheUpdatePolicy(str, Enum):
    # Failed videos keep their cached snapshot; everything else moves forward
    PER_VIDEO = "per-video"
    # The cache moves forward only when every video's actions succeeded
    WHOLE_CYCLE = "whole-cycle"


@dataclass
class CycleReport:
    success: bool
    message: str
    changes: List[StatusChange] = field(default_factory=list)
    results: List[DispatchResult] = field(default_factory=list)
    cache_updated: bool = False
    error: Optional[str] = None

    @property
    def changes_detected(self) -> int:
        return len(self.changes)


def next_cache(
    current: Sequence[VideoStatusSnapshot],
    cached: Sequence[VideoStatusSnapshot],
    results: Sequence[DispatchResult],
    policy: CacheUpdatePolicy,
) -> Optional[List[VideoStatusSnapshot]]:
    """
    The snapshot set to store after a cycle, or None to keep the previous
    cache unchanged.
    Values the monitor wrote to the sheet are folded in, so they are not
    mistaken for manual edits next cycle.
    """
    writes = {r.video_id: r.writes for r in results if r.writes}
    failed_ids = {r.video_id for r in results if not r.ok}

    if failed_ids and policy is CacheUpdatePolicy.WHOLE_CYCLE:
        retained = [s.with_writes(writes.get(s.video_id, {})) for s in cached]
        return None if retained == list(cached) else retained

    cached_by_id = {s.video_id: s for s in cached}
    merged = []
    for snapshot in current:
        if snapshot.video_id in failed_ids and snapshot.video_id in cached_by_id:
            snapshot = cached_by_id[snapshot.video_id]
        merged.append(snapshot.with_writes(writes.get(snapshot.video_id, {})))
    return merged


class StatusMonitor:
    def __init__(
        self,
        sheets: GoogleSheetsClient,
        cache: StatusCache,
        notifier: TelegramNotifier,
        dispatcher: Dispatcher,
        policy: CacheUpdatePolicy = CacheUpdatePolicy.PER_VIDEO,
        summary_threshold: int = DEFAULT_SUMMARY_THRESHOLD,
        master_sheet_url: Optional[str] = None,
    ):
        self.sheets = sheets
        self.cache = cache
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.policy = policy
        self.summary_threshold = summary_threshold
        self.master_sheet_url = master_sheet_url

    async def run_cycle(self, dry_run: bool = False) -> CycleReport:
        """
        Runs one monitoring cycle. Never raises for fetch or action failures;
        those are reported in the returned CycleReport.
        With dry_run, changes are detected and classified but no action runs
        and the cache is not written.
        """
        print("Starting status change monitoring...")
        cached = self.cache.load()

        try:
            current = await asyncio.to_thread(self.sheets.fetch_all_video_snapshots)
        except SnapshotFetchError as e:
            return await self._fetch_failed(str(e))
        except Exception as e:
            return await self._fetch_failed(
                f"Unexpected error reading master sheet: {str(e) or repr(e)}"
            )
        if not current and cached:
            return await self._fetch_failed(
                f"Master sheet returned no videos ({len(cached)} cached)"
            )

        if not cached:
            saved = False if dry_run else self.cache.save(current)
            print(f"Initial cache created with {len(current)} videos")
            return CycleReport(
                success=True, message="Initial cache created", cache_updated=saved
            )

        changes = detect_status_changes(current, cached)
        if not changes:
            print("No manual status changes detected")
            saved = False if dry_run else self.cache.save(current)
            return CycleReport(
                success=True, message="No changes detected", cache_updated=saved
            )

        print(f"Detected {len(changes)} manual status changes")
        if dry_run:
            results = [
                DispatchResult(
                    video_id=c.video_id,
                    title=c.title,
                    priority=classify_priority(c.fields),
                    actions=determine_actions(c),
                )
                for c in changes
            ]
            return CycleReport(
                success=True, message="Dry run", changes=changes, results=results
            )

        notify_each = len(changes) <= self.summary_threshold
        results = await self.dispatcher.dispatch_all(changes, notify_each=notify_each)
        if not notify_each:
            await self._send_summary(changes, results)

        snapshots = next_cache(current, cached, results, self.policy)
        cache_updated = self.cache.save(snapshots) if snapshots is not None else False
        if snapshots is None:
            print("Warning: Some actions failed, keeping previous cache")

        failed = [r for r in results if not r.ok]
        print(
            f"Status monitoring completed: {len(changes)} changes, "
            f"{len(failed)} with failed actions"
        )
        return CycleReport(
            success=not failed,
            message="Status monitoring completed",
            changes=changes,
            results=results,
            cache_updated=cache_updated,
        )

    async def _send_summary(
        self, changes: Sequence[StatusChange], results: Sequence[DispatchResult]
    ) -> None:
        message = build_status_changes_summary(changes, self.master_sheet_url)
        sent = await asyncio.to_thread(self.notifier.notify, message, None)
        # Every video shares the outcome of the single summary message
        for result in results:
            result.outcomes.append(
                ActionOutcome(
                    action=Action.NOTIFY_STATUS_CHANGE,
                    success=sent,
                    error=None if sent else "Status change summary not delivered",
                )
            )

    async def _fetch_failed(self, error: str) -> CycleReport:
        print(f"Error in status monitoring, keeping previous cache: {error}")
        message = build_error_message(
            "Status Monitoring System",
            error,
            "Status Change Detection",
            self.master_sheet_url,
        )
        await asyncio.to_thread(self.notifier.notify, message, None)
        return CycleReport(
            success=False, message="Status monitoring failed", error=error
        )

    def refresh_cache(self) -> int:
        """Stores the current sheet state as the baseline, without notifying."""
        print("Force refreshing status cache...")
        current = self.sheets.fetch_all_video_snapshots()
        if not self.cache.save(current):
            raise OSError(f"Failed to write cache file {self.cache.cache_file}")
        print(f"Cache refreshed with {len(current)} videos")
        return len(current)

    def clear_cache(self) -> bool:
        return self.cache.clear()

    def get_monitoring_stats(self) -> dict:
        cache_stats = self.cache.stats()
        return {
            "cacheStatus": cache_stats,
            "masterSheetUrl": self.master_sheet_url,
            "policy": self.policy.value,
            "summaryThreshold": self.summary_threshold,
            "lastCacheUpdate": cache_stats["lastUpdate"],
        }

    def health_check(self) -> dict:
        sheets_health = self.sheets.health_check()
        cache_health = self.cache.health_check()
        telegram_health = self.notifier.health_check()
        healthy = (
            sheets_health["status"] == "healthy"
            and cache_health["status"] == "healthy"
            and telegram_health
        )
        return {
            "status": "healthy" if healthy else "unhealthy",
            "service": "StatusMonitor",
            "dependencies": {
                "googleSheets": sheets_health,
                "cache": cache_health,
                "telegram": telegram_health,
            },
        }


def create_monitor(
    cache_file: Optional[str] = None,
    policy: CacheUpdatePolicy = CacheUpdatePolicy.PER_VIDEO,
    summary_threshold: int = DEFAULT_SUMMARY_THRESHOLD,
) -> StatusMonitor:
    """Wires the monitor to Google Sheets, Telegram, and the workflow endpoint."""
    sheets = GoogleSheetsClient()
    notifier = TelegramNotifier()
    dispatcher = Dispatcher(
        sheets, notifier, get_workflow(), master_sheet_url=sheets.master_sheet_url
    )
    return StatusMonitor(
        sheets,
        StatusCache(cache_file),
        notifier,
        dispatcher,
        policy=policy,
        summary_threshold=summary_threshold,
        master_sheet_url=sheets.master_sheet_url,
    )
