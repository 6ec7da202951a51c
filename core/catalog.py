"""
Video catalog - status bookkeeping for processed videos.

Status is written two ways: a ``<stem>_<status>.marker`` file next to the
upload, and the matching entry of ``videos.json`` when one exists. Listing
prefers the JSON entry, then the newest marker, then the folder default.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .filenames import is_video_file
from .models import VideoStatus

logger = logging.getLogger(__name__)

MARKER_SUFFIX = ".marker"


class VideoCatalog:
    """JSON + marker-file catalog of videos and their pipeline status."""

    def __init__(self, videos_file: Path, uploads_dir: Path, downloads_dir: Path):
        self.videos_file = Path(videos_file)
        self.uploads_dir = Path(uploads_dir)
        self.downloads_dir = Path(downloads_dir)

    def _load(self) -> Dict[str, Any]:
        if not self.videos_file.exists():
            return {"videos": []}
        try:
            data = json.loads(self.videos_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to read {self.videos_file}: {e}")
            return {"videos": []}
        data.setdefault("videos", [])
        return data

    def _save(self, data: Dict[str, Any]):
        self.videos_file.parent.mkdir(parents=True, exist_ok=True)
        self.videos_file.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def set_status(self, item_name: str, status: Union[VideoStatus, str]) -> bool:
        """Record a status milestone for a video (filename or stem)."""
        status = VideoStatus(status)
        stem = Path(item_name).stem if Path(item_name).suffix else item_name
        written = self._write_marker(item_name, stem, status)
        updated = self._update_json(stem, status)
        return written or updated

    def _write_marker(self, item_name: str, stem: str, status: VideoStatus) -> bool:
        marker = self.uploads_dir / f"{stem}_{status.value}{MARKER_SUFFIX}"
        try:
            self.uploads_dir.mkdir(parents=True, exist_ok=True)
            marker.write_text(json.dumps({
                "filename": item_name,
                "status": status.value,
                "timestamp": datetime.now().isoformat(),
            }), encoding="utf-8")
        except OSError as e:
            logger.error(f"Error writing status marker for {stem}: {e}")
            return False
        logger.info(f"Status marker created: {marker.name}")
        return True

    def clear_status(self, item_name: str, status: Union[VideoStatus, str]) -> bool:
        """Remove the marker for one status milestone, e.g. when a queued upload is rejected."""
        stem = Path(item_name).stem if Path(item_name).suffix else item_name
        marker = self.uploads_dir / f"{stem}_{VideoStatus(status).value}{MARKER_SUFFIX}"
        if not marker.exists():
            return False
        marker.unlink()
        logger.info(f"Status marker removed: {marker.name}")
        return True

    def _update_json(self, stem: str, status: VideoStatus) -> bool:
        data = self._load()
        for entry in data["videos"]:
            if entry.get("name") == stem:
                old = entry.get("status")
                entry["status"] = status.value
                self._save(data)
                logger.info(f"Updated video status: {stem} ({old} -> {status.value})")
                return True
        return False

    def marker_status(self, stem: str) -> Optional[VideoStatus]:
        """Status of the most recently written marker for `stem`."""
        if not self.uploads_dir.exists():
            return None
        newest = None
        for status in VideoStatus:
            marker = self.uploads_dir / f"{stem}_{status.value}{MARKER_SUFFIX}"
            if marker.exists():
                mtime = marker.stat().st_mtime
                if newest is None or mtime >= newest[0]:
                    newest = (mtime, status)
        return newest[1] if newest else None

    def status_of(self, stem: str) -> Optional[VideoStatus]:
        for entry in self._load()["videos"]:
            if entry.get("name") == stem and entry.get("status"):
                try:
                    return VideoStatus(entry["status"])
                except ValueError:
                    break
        return self.marker_status(stem)

    def list_videos(self) -> List[Dict[str, Any]]:
        """Videos found in the uploads/downloads folders plus catalog-only entries."""
        data = self._load()
        by_name = {entry.get("name"): entry for entry in data["videos"]}
        videos = []
        seen = set()

        for folder, directory in (("uploads", self.uploads_dir), ("downloads", self.downloads_dir)):
            if not directory.exists():
                continue
            for path in directory.iterdir():
                if not path.is_file() or not is_video_file(path):
                    continue
                stat = path.stat()
                entry = by_name.get(path.stem, {})
                status = entry.get("status")
                if not status:
                    marker = self.marker_status(path.stem)
                    status = marker.value if marker else (
                        VideoStatus.DOWNLOADED.value if folder == "uploads" else VideoStatus.EXPORTED.value
                    )
                videos.append({
                    "filename": path.name,
                    "title": path.stem,
                    "folder": folder,
                    "size": stat.st_size,
                    "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                    "status": status,
                    "description": entry.get("description"),
                    "archived": False,
                })
                seen.add(path.stem)

        for name, entry in by_name.items():
            if name in seen:
                continue
            videos.append({
                "filename": f"{name}.mp4",
                "title": name,
                "folder": "archived",
                "size": 0,
                "modified": None,
                "status": entry.get("status", "archived"),
                "description": entry.get("description"),
                "archived": True,
            })

        videos.sort(key=lambda v: (v["archived"], -(datetime.fromisoformat(v["modified"]).timestamp() if v["modified"] else 0)))
        return videos
