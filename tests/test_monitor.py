import asyncio
import os
import shutil
import tempfile
import unittest
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

from video_status_monitor import monitor
from video_status_monitor.cache import StatusCache
from video_status_monitor.dispatch import Dispatcher
from video_status_monitor.models import (
    Action,
    ActionOutcome,
    DispatchResult,
    Priority,
    VideoStatusSnapshot,
)
from video_status_monitor.monitor import CacheUpdatePolicy, StatusMonitor
from video_status_monitor.sheets import SnapshotFetchError


def snapshot(video_id, **overrides):
    values = {
        "title": f"Title {video_id}",
        "main_status": "Processing",
        "script_approved": "Pending",
        "voice_generation_status": "Not Ready",
        "video_editing_status": "Not Ready",
    }
    values.update(overrides)
    return VideoStatusSnapshot(video_id=video_id, **values)


def result_for(change, success=True):
    return DispatchResult(
        video_id=change.video_id,
        title=change.title,
        priority=Priority.HIGH,
        actions=[Action.SYNC_WORKFLOW_STATUS],
        outcomes=[
            ActionOutcome(
                Action.SYNC_WORKFLOW_STATUS,
                success,
                None if success else "pipeline down",
            )
        ],
    )


class TestStatusMonitor(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cache = StatusCache(os.path.join(self.temp_dir, "cache.json"))
        self.sheets = MagicMock()
        self.notifier = MagicMock()
        self.notifier.notify.return_value = True
        self.dispatcher = MagicMock()
        self.failing_ids = set()
        self.dispatcher.dispatch_all = AsyncMock(side_effect=self._dispatch_all)
        self.print_patcher = patch("builtins.print")
        self.print_patcher.start()

    def tearDown(self):
        self.print_patcher.stop()
        shutil.rmtree(self.temp_dir)

    async def _dispatch_all(self, changes, notify_each=True):
        return [result_for(c, c.video_id not in self.failing_ids) for c in changes]

    def make_monitor(self, **kwargs):
        return StatusMonitor(
            self.sheets,
            self.cache,
            self.notifier,
            self.dispatcher,
            master_sheet_url="https://docs.google.com/spreadsheets/d/master",
            **kwargs,
        )

    def run_cycle(self, status_monitor, **kwargs):
        return asyncio.run(status_monitor.run_cycle(**kwargs))

    def test_first_run_creates_cache_without_dispatching(self):
        self.sheets.fetch_all_video_snapshots.return_value = [snapshot("VID-0001")]

        report = self.run_cycle(self.make_monitor())

        self.assertTrue(report.success)
        self.assertEqual(report.message, "Initial cache created")
        self.assertTrue(report.cache_updated)
        self.assertEqual(self.cache.load(), [snapshot("VID-0001")])
        self.dispatcher.dispatch_all.assert_not_called()
        self.notifier.notify.assert_not_called()

    def test_no_changes_refreshes_cache(self):
        self.cache.save([snapshot("VID-0001")])
        self.sheets.fetch_all_video_snapshots.return_value = [
            snapshot("VID-0001"),
            snapshot("VID-0002"),
        ]

        report = self.run_cycle(self.make_monitor())

        self.assertTrue(report.success)
        self.assertEqual(report.changes_detected, 0)
        self.assertEqual(len(self.cache.load()), 2)
        self.dispatcher.dispatch_all.assert_not_called()

    def test_fetch_failure_keeps_cache_and_notifies(self):
        cached = [snapshot("VID-0001")]
        self.cache.save(cached)
        self.sheets.fetch_all_video_snapshots.side_effect = SnapshotFetchError("quota")

        report = self.run_cycle(self.make_monitor())

        self.assertFalse(report.success)
        self.assertEqual(report.error, "quota")
        self.assertEqual(self.cache.load(), cached)
        message = self.notifier.notify.call_args.args[0]
        self.assertIn("Processing Error", message)
        self.assertIn("quota", message)

    def test_empty_fetch_with_cache_is_a_failure(self):
        cached = [snapshot("VID-0001")]
        self.cache.save(cached)
        self.sheets.fetch_all_video_snapshots.return_value = []

        report = self.run_cycle(self.make_monitor())

        self.assertFalse(report.success)
        self.assertEqual(self.cache.load(), cached)
        self.notifier.notify.assert_called_once()

    def test_changes_are_dispatched_and_cache_advances(self):
        self.cache.save([snapshot("VID-0001")])
        current = [snapshot("VID-0001", main_status="Approved")]
        self.sheets.fetch_all_video_snapshots.return_value = current

        report = self.run_cycle(self.make_monitor())

        self.assertTrue(report.success)
        self.assertEqual(report.changes_detected, 1)
        self.assertTrue(report.cache_updated)
        self.assertEqual(self.cache.load(), current)
        self.dispatcher.dispatch_all.assert_awaited_once()
        self.assertTrue(self.dispatcher.dispatch_all.call_args.kwargs["notify_each"])

    def test_per_video_policy_keeps_failed_videos_cached(self):
        cached = [snapshot("VID-0001"), snapshot("VID-0002")]
        self.cache.save(cached)
        current = [
            snapshot("VID-0001", main_status="Approved"),
            snapshot("VID-0002", main_status="Error"),
        ]
        self.sheets.fetch_all_video_snapshots.return_value = current
        self.failing_ids = {"VID-0002"}

        report = self.run_cycle(self.make_monitor())

        self.assertFalse(report.success)
        self.assertTrue(report.cache_updated)
        self.assertEqual(self.cache.load(), [current[0], cached[1]])

    def test_whole_cycle_policy_keeps_previous_cache(self):
        cached = [snapshot("VID-0001"), snapshot("VID-0002")]
        self.cache.save(cached)
        self.sheets.fetch_all_video_snapshots.return_value = [
            snapshot("VID-0001", main_status="Approved"),
            snapshot("VID-0002", main_status="Error"),
        ]
        self.failing_ids = {"VID-0002"}

        report = self.run_cycle(
            self.make_monitor(policy=CacheUpdatePolicy.WHOLE_CYCLE)
        )

        self.assertFalse(report.success)
        self.assertFalse(report.cache_updated)
        self.assertEqual(self.cache.load(), cached)

    def test_summary_replaces_per_change_messages(self):
        ids = [f"VID-000{i}" for i in range(1, 5)]
        self.cache.save([snapshot(i) for i in ids])
        self.sheets.fetch_all_video_snapshots.return_value = [
            snapshot(i, main_status="Approved") for i in ids
        ]

        report = self.run_cycle(self.make_monitor(summary_threshold=3))

        self.assertFalse(self.dispatcher.dispatch_all.call_args.kwargs["notify_each"])
        self.notifier.notify.assert_called_once()
        self.assertIn("4 videos changed", self.notifier.notify.call_args.args[0])
        for result in report.results:
            self.assertEqual(result.outcomes[-1].action, Action.NOTIFY_STATUS_CHANGE)
            self.assertTrue(result.outcomes[-1].success)
        self.assertTrue(report.success)

    def test_undelivered_summary_does_not_hold_back_cache(self):
        ids = [f"VID-000{i}" for i in range(1, 3)]
        self.cache.save([snapshot(i) for i in ids])
        current = [snapshot(i, main_status="Approved") for i in ids]
        self.sheets.fetch_all_video_snapshots.return_value = current
        self.notifier.notify.return_value = False

        report = self.run_cycle(self.make_monitor(summary_threshold=1))

        self.assertTrue(report.success)
        for result in report.results:
            self.assertEqual(
                [o.action for o in result.failed], [Action.NOTIFY_STATUS_CHANGE]
            )
        self.assertEqual(self.cache.load(), current)

    def test_unexpected_fetch_error_is_reported(self):
        cached = [snapshot("VID-0001")]
        self.cache.save(cached)
        self.sheets.fetch_all_video_snapshots.side_effect = TimeoutError("timed out")

        report = self.run_cycle(self.make_monitor())

        self.assertFalse(report.success)
        self.assertIn("timed out", report.error)
        self.assertEqual(self.cache.load(), cached)
        self.notifier.notify.assert_called_once()


    def test_dry_run_classifies_without_side_effects(self):
        cached = [snapshot("VID-0001")]
        self.cache.save(cached)
        self.sheets.fetch_all_video_snapshots.return_value = [
            snapshot("VID-0001", script_approved="Approved")
        ]

        report = self.run_cycle(self.make_monitor(), dry_run=True)

        self.assertTrue(report.success)
        self.assertFalse(report.cache_updated)
        self.assertEqual(report.results[0].priority, Priority.CRITICAL)
        self.assertEqual(
            report.results[0].actions, [Action.TRIGGER_APPROVED_SCRIPT_WORKFLOW]
        )
        self.assertEqual(report.results[0].outcomes, [])
        self.dispatcher.dispatch_all.assert_not_called()
        self.assertEqual(self.cache.load(), cached)

    def test_refresh_cache(self):
        self.sheets.fetch_all_video_snapshots.return_value = [
            snapshot("VID-0001"),
            snapshot("VID-0002"),
        ]
        self.assertEqual(self.make_monitor().refresh_cache(), 2)
        self.assertEqual(len(self.cache.load()), 2)
        self.notifier.notify.assert_not_called()

    def test_clear_cache_and_stats(self):
        status_monitor = self.make_monitor()
        self.cache.save([snapshot("VID-0001")])
        stats = status_monitor.get_monitoring_stats()
        self.assertEqual(stats["cacheStatus"]["videoCount"], 1)
        self.assertEqual(stats["policy"], "per-video")
        self.assertIsNotNone(stats["lastCacheUpdate"])

        self.assertTrue(status_monitor.clear_cache())
        self.assertEqual(self.cache.load(), [])

    def test_health_check(self):
        self.sheets.health_check.return_value = {"status": "healthy"}
        self.notifier.health_check.return_value = True
        self.assertEqual(self.make_monitor().health_check()["status"], "healthy")

        self.notifier.health_check.return_value = False
        health = self.make_monitor().health_check()
        self.assertEqual(health["status"], "unhealthy")
        self.assertFalse(health["dependencies"]["telegram"])


class TestNextCache(unittest.TestCase):
    def test_all_ok_takes_current(self):
        current = [snapshot("VID-0001", main_status="Approved")]
        self.assertEqual(
            monitor.next_cache(current, [snapshot("VID-0001")], [], CacheUpdatePolicy.WHOLE_CYCLE),
            current,
        )

    def test_failed_new_video_takes_current(self):
        current = [snapshot("VID-0009")]
        failed = DispatchResult(
            "VID-0009",
            "t",
            Priority.NORMAL,
            [],
            [ActionOutcome(Action.SYNC_WORKFLOW_STATUS, False, "x")],
        )
        self.assertEqual(
            monitor.next_cache(current, [], [failed], CacheUpdatePolicy.PER_VIDEO),
            current,
        )

    def test_writes_are_folded_into_current(self):
        current = [snapshot("VID-0001", video_editing_status="Completed")]
        done = DispatchResult(
            "VID-0001",
            "t",
            Priority.MEDIUM,
            [Action.UPDATE_VIDEO_COMPLETION_STATUS],
            [ActionOutcome(Action.UPDATE_VIDEO_COMPLETION_STATUS, True)],
            writes={"status": "Completed", "videoEditingCompletedTime": "now"},
        )
        result = monitor.next_cache(current, [], [done], CacheUpdatePolicy.PER_VIDEO)
        self.assertEqual(result[0].main_status, "Completed")
        self.assertEqual(result[0].video_editing_status, "Completed")

    def test_whole_cycle_keeps_cache_but_folds_writes(self):
        cached = [snapshot("VID-0001"), snapshot("VID-0002")]
        current = [
            snapshot("VID-0001", script_approved="Needs Changes"),
            snapshot("VID-0002", main_status="Error"),
        ]
        results = [
            DispatchResult(
                "VID-0001",
                "t",
                Priority.CRITICAL,
                [Action.TRIGGER_SCRIPT_REGENERATION],
                [ActionOutcome(Action.TRIGGER_SCRIPT_REGENERATION, True)],
                writes={"status": "Processing", "scriptApproved": "Pending"},
            ),
            DispatchResult(
                "VID-0002",
                "t",
                Priority.HIGH,
                [Action.SYNC_WORKFLOW_STATUS],
                [ActionOutcome(Action.SYNC_WORKFLOW_STATUS, False, "x")],
            ),
        ]
        self.assertIsNone(
            monitor.next_cache(current, cached, results, CacheUpdatePolicy.WHOLE_CYCLE)
        )

        results[0].writes = {"status": "Approved"}
        retained = monitor.next_cache(
            current, cached, results, CacheUpdatePolicy.WHOLE_CYCLE
        )
        self.assertEqual(retained[0].main_status, "Approved")
        self.assertEqual(retained[1], cached[1])


class FakeSheets:
    """In-memory master sheet that applies the monitor's writes."""

    def __init__(self, snapshots):
        self.rows = {s.video_id: s for s in snapshots}

    def edit(self, video_id, **values):
        self.rows[video_id] = replace(self.rows[video_id], **values)

    def fetch_all_video_snapshots(self):
        return list(self.rows.values())

    def update_fields(self, video_id, updates, expected=None):
        self.rows[video_id] = self.rows[video_id].with_writes(updates)
        return True

    def get_existing_script_content(self, snapshot):
        return None


class TestMonitorAcrossCycles(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cache = StatusCache(os.path.join(self.temp_dir, "cache.json"))
        self.sheets = FakeSheets([snapshot("VID-0001", video_editing_status="First Draft")])
        self.notifier = MagicMock()
        self.notifier.notify.return_value = True
        self.workflow = MagicMock()
        self.workflow.configured = True
        self.workflow.process_approved_script.return_value = True
        self.workflow.sync_status.return_value = True
        dispatcher = Dispatcher(
            self.sheets, self.notifier, self.workflow, timestamp=lambda: "now"
        )
        self.monitor = StatusMonitor(self.sheets, self.cache, self.notifier, dispatcher)
        self.print_patcher = patch("builtins.print")
        self.print_patcher.start()
        self.run_cycle()

    def tearDown(self):
        self.print_patcher.stop()
        shutil.rmtree(self.temp_dir)

    def run_cycle(self):
        return asyncio.run(self.monitor.run_cycle())

    def test_own_writes_are_not_reported_next_cycle(self):
        self.sheets.edit("VID-0001", video_editing_status="Completed")

        first = self.run_cycle()
        self.assertEqual(first.changes_detected, 1)
        self.assertEqual(self.sheets.rows["VID-0001"].main_status, "Completed")
        notified = self.notifier.notify.call_count

        second = self.run_cycle()
        self.assertEqual(second.changes_detected, 0)
        self.assertEqual(self.notifier.notify.call_count, notified)
        self.workflow.sync_status.assert_not_called()

    def test_regeneration_writes_are_not_reported_next_cycle(self):
        self.sheets.edit("VID-0001", script_approved="Needs Changes")

        self.assertEqual(self.run_cycle().changes_detected, 1)
        self.assertEqual(self.sheets.rows["VID-0001"].script_approved, "Pending")
        self.assertEqual(self.run_cycle().changes_detected, 0)

    def test_telegram_outage_does_not_repeat_actions(self):
        self.notifier.notify.return_value = False
        self.sheets.edit("VID-0001", script_approved="Approved")

        for _ in range(3):
            self.run_cycle()

        self.workflow.process_approved_script.assert_called_once()


if __name__ == "__main__":
    unittest.main()
