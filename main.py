# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "google-api-python-client>=2.187.0",
#     "google-auth>=2.45.0",
#     "google-auth-oauthlib>=1.2.0",
#     "httplib2>=0.22.0",
#     "polars>=1.36.1",
#     "requests>=2.32.5",
# ]
# ///
#
# Run one poll cycle from the repository root as:
# uv run main.py monitor
#
# Schedule it (e.g. every 5 minutes from cron) to pick up manual edits to the
# master sheet. Use `uv run main.py refresh-cache` once after setup.

from video_status_monitor.main import main

if __name__ == "__main__":
    main()
