"""
Core components for editor cutout automation.

Modules:
- models: Editor, VideoJob, JobResult, Stage and status enums
- error_handler: Stage-tagged error taxonomy and failure classification
- editor_registry: Atomic leasing of editor URLs
- catalog: videos.json + marker-file status bookkeeping
- progress: Progress fan-out (SSE)
- filenames: Download name normalization and matching
- detectors: Bounded polling for upload, cutout, render and download
- workflow: The editing stage machine (import core.workflow directly)
- job_driver: Admission, run and cleanup of a job (import core.job_driver directly)
"""

from .models import Editor, EditorStatus, VideoStatus, Stage, VideoJob, JobResult, ClipGeometry
from .error_handler import (
    PipelineError,
    NoResourceAvailable,
    ActionNotLocatable,
    StageTimeout,
    DownloadNotFound,
    ErrorCategory,
    status_for_failure,
)
from .editor_registry import EditorRegistry
from .catalog import VideoCatalog
from .progress import ProgressBroadcaster
from .filenames import normalize_filename, names_match
from .detectors import PollPolicy, Clock

__all__ = [
    "Editor",
    "EditorStatus",
    "VideoStatus",
    "Stage",
    "VideoJob",
    "JobResult",
    "ClipGeometry",
    "PipelineError",
    "NoResourceAvailable",
    "ActionNotLocatable",
    "StageTimeout",
    "DownloadNotFound",
    "ErrorCategory",
    "status_for_failure",
    "EditorRegistry",
    "VideoCatalog",
    "ProgressBroadcaster",
    "normalize_filename",
    "names_match",
    "PollPolicy",
    "Clock",
]
