import contextlib
import io

from mcp.server.fastmcp import FastMCP

from video_status_monitor.main import main as app_main

mcp = FastMCP("video-status-monitor")


@mcp.tool()
def check_status_changes(
    command: str = "monitor",
    cache_file: str | None = None,
    policy: str = "per-video",
    dry_run: bool = False,
) -> str:
    """
    Check the master sheet for manual status edits and run the follow-up actions.

    Args:
        command: One of 'monitor' (default), 'refresh-cache', 'clear-cache',
            'stats' or 'health'.
        cache_file: Path of the status cache JSON file. Defaults to
            $STATUS_CACHE_FILE or 'temp/video_status_cache.json'.
        policy: Cache update policy after failed actions, 'per-video' (default)
            or 'whole-cycle'.
        dry_run: If True, changes are detected and classified but no action runs
            and the cache is not written.
    """
    args = [command, "--policy", policy]

    if cache_file:
        args.extend(["--cache-file", cache_file])

    if dry_run:
        args.append("--dry-run")

    # Capture stdout/stderr to return as tool output
    f = io.StringIO()
    with contextlib.redirect_stdout(f), contextlib.redirect_stderr(f):
        try:
            app_main(args)
            output = f.getvalue()
            return f"Successfully ran {command}.\n\nOutput Log:\n{output}"
        except SystemExit as e:
            output = f.getvalue()
            return f"Error running {command}: exit status {e.code}\n\nOutput Log:\n{output}"
        except Exception as e:
            output = f.getvalue()
            return f"Error running {command}: {str(e)}\n\nOutput Log:\n{output}"


if __name__ == "__main__":
    mcp.run()
