import argparse
import asyncio
import json
import os
import sys

from video_status_monitor.monitor import (
    DEFAULT_SUMMARY_THRESHOLD,
    CacheUpdatePolicy,
    CycleReport,
    create_monitor,
)
from video_status_monitor.utils import format_video_title, results_to_dataframe

COMMANDS = ["monitor", "refresh-cache", "clear-cache", "stats", "health"]


def print_report(report: CycleReport) -> None:
    print(f"{report.message}: {report.changes_detected} changes detected")
    if report.error:
        print(f"Error: {report.error}")
    for result in report.results:
        actions = ", ".join(a.value for a in result.actions) or "none"
        print(
            f"  {result.video_id} - {format_video_title(result.title)} "
            f"[{result.priority.value}] actions: {actions}"
        )
        if result.outcomes:
            print(f"    {len(result.succeeded)}/{len(result.outcomes)} actions succeeded")
        for outcome in result.outcomes:
            if outcome.skipped:
                state = "skipped"
            elif outcome.success:
                state = "ok"
            else:
                state = f"FAILED ({outcome.error})"
            print(f"    {outcome.action.value}: {state}")
    print(f"Cache updated: {report.cache_updated}")


def write_report(report: CycleReport, path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    results_to_dataframe(report.results).write_csv(path)
    print(f"Report saved to: {os.path.abspath(path)}")


def main(args_list: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Detect manual status edits in the master sheet and act on them."
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="monitor",
        choices=COMMANDS,
        help=(
            "monitor (default): run one poll cycle.\n"
            "refresh-cache: store the current sheet state without notifying.\n"
            "clear-cache: delete the cache so the next cycle starts fresh.\n"
            "stats: print cache statistics.\n"
            "health: check Google Sheets, the cache, and Telegram."
        ),
    )
    parser.add_argument(
        "-c",
        "--cache-file",
        default=None,
        help=(
            "Path of the status cache JSON file. "
            "Defaults to $STATUS_CACHE_FILE or 'temp/video_status_cache.json'."
        ),
    )
    parser.add_argument(
        "-p",
        "--policy",
        default=CacheUpdatePolicy.PER_VIDEO.value,
        choices=[p.value for p in CacheUpdatePolicy],
        help=(
            "When the cache moves forward after failed actions. "
            "'per-video' keeps failed videos' old snapshots so they are retried; "
            "'whole-cycle' keeps the whole previous cache if anything failed."
        ),
    )
    parser.add_argument(
        "-s",
        "--summary-threshold",
        type=int,
        default=DEFAULT_SUMMARY_THRESHOLD,
        help=(
            "Send one summary message instead of per-change messages when more "
            f"than this many videos changed. Default is {DEFAULT_SUMMARY_THRESHOLD}."
        ),
    )
    parser.add_argument(
        "-r",
        "--report",
        default=None,
        help="Write the per-action outcomes of a monitor cycle to this CSV file.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect and classify changes without running actions or saving the cache.",
    )

    args = parser.parse_args(args_list)

    monitor = create_monitor(
        cache_file=args.cache_file,
        policy=CacheUpdatePolicy(args.policy),
        summary_threshold=args.summary_threshold,
    )

    if args.command == "monitor":
        report = asyncio.run(monitor.run_cycle(dry_run=args.dry_run))
        print_report(report)
        if args.report:
            write_report(report, args.report)
        if not report.success:
            sys.exit(1)
    elif args.command == "refresh-cache":
        count = monitor.refresh_cache()
        print(f"Cached {count} videos")
    elif args.command == "clear-cache":
        if not monitor.clear_cache():
            sys.exit(1)
        print("Cache cleared successfully")
    elif args.command == "stats":
        print(json.dumps(monitor.get_monitoring_stats(), indent=2))
    elif args.command == "health":
        health = monitor.health_check()
        print(json.dumps(health, indent=2))
        if health["status"] != "healthy":
            sys.exit(1)


if __name__ == "__main__":
    main()
