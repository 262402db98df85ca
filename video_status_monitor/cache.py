import json
import os
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from video_status_monitor.models import VideoStatusSnapshot

DEFAULT_CACHE_FILE = os.path.join("temp", "video_status_cache.json")

_SNAPSHOT_FIELDS = {f.name for f in fields(VideoStatusSnapshot)}


class StatusCache:
    """
    The last processed snapshot set, persisted as JSON between poll cycles.
    The monitor owns when it is replaced; a failed cycle leaves it untouched.
    """

    def __init__(self, cache_file: Optional[str] = None):
        self.cache_file = Path(
            cache_file or os.environ.get("STATUS_CACHE_FILE", DEFAULT_CACHE_FILE)
        )

    def _read(self) -> dict:
        if not self.cache_file.exists():
            print("No cache file found, starting with empty cache")
            return {"videos": [], "lastUpdate": None}
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Warning: Failed to load cache file, starting with empty cache: {e}")
            return {"videos": [], "lastUpdate": None}
        if not isinstance(data, dict):
            print("Warning: Cache file has an unexpected format, ignoring it")
            return {"videos": [], "lastUpdate": None}
        return data

    def load(self) -> List[VideoStatusSnapshot]:
        snapshots = []
        for video in self._read().get("videos") or []:
            if not isinstance(video, dict) or not video.get("video_id"):
                continue
            snapshots.append(
                VideoStatusSnapshot(
                    **{k: v for k, v in video.items() if k in _SNAPSHOT_FIELDS}
                )
            )
        return snapshots

    def save(self, snapshots: Sequence[VideoStatusSnapshot]) -> bool:
        data = {
            "videos": [asdict(s) for s in snapshots],
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a crash never leaves a truncated cache
            tmp_file = self.cache_file.with_suffix(self.cache_file.suffix + ".tmp")
            tmp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_file, self.cache_file)
        except OSError as e:
            print(f"Error: Failed to save cache file: {e}")
            return False
        print(f"Saved cache with {len(snapshots)} videos at {data['lastUpdate']}")
        return True

    def last_update(self) -> Optional[datetime]:
        last = self._read().get("lastUpdate")
        return datetime.fromisoformat(last) if last else None

    def clear(self) -> bool:
        try:
            if self.cache_file.exists():
                self.cache_file.unlink()
                print("Cache file cleared")
            return True
        except OSError as e:
            print(f"Error: Failed to clear cache file: {e}")
            return False

    def stats(self) -> dict:
        data = self._read()
        exists = self.cache_file.exists()
        return {
            "exists": exists,
            "videoCount": len(data.get("videos") or []),
            "lastUpdate": data.get("lastUpdate"),
            "fileSize": self.cache_file.stat().st_size if exists else 0,
        }

    def health_check(self) -> dict:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            if not os.access(self.cache_file.parent, os.W_OK):
                raise OSError(f"Cache directory not writable: {self.cache_file.parent}")
            return {
                "status": "healthy",
                "service": "StatusCache",
                "cacheFile": str(self.cache_file),
            }
        except OSError as e:
            return {
                "status": "unhealthy",
                "service": "StatusCache",
                "error": str(e),
                "cacheFile": str(self.cache_file),
            }
