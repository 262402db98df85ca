"""
Drops the cached Google OAuth token and signs in again, so the monitor gets
a fresh refresh token for the Sheets and Drive scopes.

Run it after the scopes change or when a cycle fails with a RefreshError:
    uv run scripts/reauthenticate_google.py
"""

import sys

from video_status_monitor.sheets import SCOPES, TOKEN_FILE, get_creds


def main() -> int:
    TOKEN_FILE.unlink(missing_ok=True)
    print(f"Requesting scopes: {', '.join(SCOPES)}")
    try:
        get_creds()
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    print(f"Token saved to {TOKEN_FILE}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
