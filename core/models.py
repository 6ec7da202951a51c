#!/usr/bin/env python3
"""
Unified Data Models for the editor automation pipeline.

All shared data models are defined here to ensure consistency across the codebase.
"""

import json
import uuid
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
from pathlib import Path


# ============== Enums ==============

class EditorStatus(str, Enum):
    """Lease state of an editor session URL."""
    AVAILABLE = "available"
    IN_USE = "in-use"


class VideoStatus(str, Enum):
    """Catalog status values for a processed video."""
    DOWNLOADED = "downloaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    RMBG = "rmbg"            # background removed in the editor
    EXPORTED = "exported"
    FILED = "filed"          # background removed, export/download failed
    FAILED = "failed"


class Stage(str, Enum):
    """Ordered stages of the editing workflow."""
    IDLE = "idle"
    UPLOADING = "uploading"
    WAIT_UPLOAD_TRANSCODE = "wait_upload_transcode"
    PLACED_ON_TIMELINE = "placed_on_timeline"
    PROJECT_RENAMED = "project_renamed"
    ZOOMED_IN = "zoomed_in"
    POSITIONED_ON_TRACK2 = "positioned_on_track2"
    PLAYHEAD_RESET = "playhead_reset"
    ZOOMED_OUT = "zoomed_out"
    DURATION_TRIMMED = "duration_trimmed"
    SPLIT = "split"
    RIGHT_SEGMENT_SELECTED = "right_segment_selected"
    RIGHT_SEGMENT_DELETED = "right_segment_deleted"
    REGION_SELECTED = "region_selected"
    CUTOUT_INVOKED = "cutout_invoked"
    CUTOUT_ENABLED = "cutout_enabled"
    WAIT_CUTOUT_COMPLETE = "wait_cutout_complete"
    EXPORT_INVOKED = "export_invoked"
    DOWNLOAD_INVOKED = "download_invoked"
    EXPORT_CONFIRMED = "export_confirmed"
    WAIT_DOWNLOAD_READY = "wait_download_ready"
    DONE = "done"
    FAILED = "failed"

    @property
    def position(self) -> int:
        """Index of the stage in pipeline order (FAILED sorts last)."""
        return list(Stage).index(self)


# ============== Data Models ==============

@dataclass
class Editor:
    """A leasable remote editing session (one editor URL)."""
    url: str
    status: EditorStatus = EditorStatus.AVAILABLE

    @property
    def available(self) -> bool:
        return self.status == EditorStatus.AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Editor":
        return cls(url=data["url"], status=EditorStatus(data.get("status", "available")))


@dataclass
class ClipGeometry:
    """Pixel geometry of the timeline canvas for the current job."""
    x: float
    y: float
    width: float
    height: float
    track_top: float = 87

    @property
    def track_center_y(self) -> float:
        """Vertical centre of the main track."""
        return self.y + self.track_top + 25


@dataclass
class ResizeHandle:
    """Discovered right-edge resize handle of the selected clip."""
    x: float
    y: float


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress message emitted by the pipeline."""
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "timestamp": self.timestamp.isoformat()}

    def to_sse(self) -> str:
        """Render as a Server-Sent-Events data frame."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass
class VideoJob:
    """One run of the workflow for one input file on one editor."""
    video_path: Path
    editor: Editor
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stage: Stage = Stage.IDLE
    stage_started_at: Optional[datetime] = None
    stage_durations: Dict[str, float] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)
    export_name: Optional[str] = None
    downloaded_path: Optional[Path] = None
    failed_stage: Optional[Stage] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def file_name(self) -> str:
        return self.video_path.name

    @property
    def stem(self) -> str:
        return self.video_path.stem

    def enter(self, stage: Stage):
        """Close the running stage's timer and start the next one."""
        now = datetime.now()
        if self.stage_started_at is not None and self.stage not in (Stage.IDLE, Stage.FAILED):
            self.stage_durations[self.stage.value] = (now - self.stage_started_at).total_seconds()
        self.stage = stage
        self.stage_started_at = now

    def stage_elapsed(self) -> float:
        if self.stage_started_at is None:
            return 0.0
        return (datetime.now() - self.stage_started_at).total_seconds()

    def fail(self, stage: Stage, reason: str):
        self.enter(Stage.FAILED)
        self.failed_stage = stage
        self.error = reason


@dataclass
class JobResult:
    """Terminal outcome of a job."""
    success: bool
    job_id: str
    video_path: str
    editor_url: str
    stage: Stage
    status: VideoStatus
    message: str = ""
    downloaded_path: Optional[str] = None
    screenshot_path: Optional[str] = None
    stage_durations: Dict[str, float] = field(default_factory=dict)
    finished_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_job(cls, job: VideoJob, status: VideoStatus, message: str = "",
                 screenshot_path: Optional[str] = None) -> "JobResult":
        return cls(
            success=job.failed_stage is None and job.stage == Stage.DONE,
            job_id=job.job_id,
            video_path=str(job.video_path),
            editor_url=job.editor.url,
            stage=job.failed_stage or job.stage,
            status=status,
            message=message,
            downloaded_path=str(job.downloaded_path) if job.downloaded_path else None,
            screenshot_path=screenshot_path,
            stage_durations=dict(job.stage_durations),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "job_id": self.job_id,
            "video_path": self.video_path,
            "editor_url": self.editor_url,
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "downloaded_path": self.downloaded_path,
            "screenshot_path": self.screenshot_path,
            "stage_durations": self.stage_durations,
            "finished_at": self.finished_at.isoformat(),
        }
