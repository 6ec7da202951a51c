"""
Error taxonomy for the editor automation pipeline.

Every failure raised inside the pipeline derives from PipelineError and carries
the stage it happened in, so callers classify failures by stage instead of by
message text.
"""

import logging
from enum import Enum
from typing import Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from .models import Stage, VideoStatus

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    ADMISSION = "admission"
    BROWSER = "browser"
    NAVIGATION = "navigation"
    LOCATOR = "locator"
    TIMEOUT = "timeout"
    DOWNLOAD = "download"
    INPUT = "input"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """Base class for every pipeline failure."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, stage: Optional[Stage] = None):
        super().__init__(message)
        self.stage = stage
        self.result = None  # JobResult attached by the job driver


class NoResourceAvailable(PipelineError):
    """No editor is free at admission time."""
    category = ErrorCategory.ADMISSION


class ResourceUnavailable(PipelineError):
    """Tried to lease an editor that is already leased or unknown."""
    category = ErrorCategory.ADMISSION


class RegistryError(PipelineError):
    """The editor store could not be read or written."""
    category = ErrorCategory.ADMISSION


class SessionLaunchFailed(PipelineError):
    category = ErrorCategory.BROWSER


class NavigationFailed(PipelineError):
    category = ErrorCategory.NAVIGATION


class VideoFileNotFound(PipelineError):
    category = ErrorCategory.INPUT


class ActionNotLocatable(PipelineError):
    """Every locator strategy for an action failed."""
    category = ErrorCategory.LOCATOR

    def __init__(self, action: str, attempts: int, stage: Optional[Stage] = None):
        super().__init__(
            f"Could not locate '{action}' with any of {attempts} strategies", stage=stage
        )
        self.action = action
        self.attempts = attempts


class StageTimeout(PipelineError):
    category = ErrorCategory.TIMEOUT


class StageFailed(PipelineError):
    """A browser call failed inside a stage."""
    category = ErrorCategory.BROWSER


class DownloadNotFound(PipelineError):
    category = ErrorCategory.DOWNLOAD


def categorize(error: BaseException) -> ErrorCategory:
    """Map any exception to an ErrorCategory for logging."""
    if isinstance(error, PipelineError):
        return error.category
    if isinstance(error, PlaywrightTimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, PlaywrightError):
        return ErrorCategory.BROWSER
    if isinstance(error, FileNotFoundError):
        return ErrorCategory.INPUT
    return ErrorCategory.UNKNOWN


def status_for_failure(stage: Optional[Stage]) -> VideoStatus:
    """
    Catalog status for a job that failed in `stage`.

    Once the cutout has completed, the remote project already holds the
    processed clip, so the video is reported as FILED rather than FAILED.
    """
    if stage is None or stage == Stage.FAILED:
        return VideoStatus.FAILED
    if stage.position > Stage.WAIT_CUTOUT_COMPLETE.position:
        return VideoStatus.FILED
    return VideoStatus.FAILED


def log_failure(error: BaseException, job_id: str = "", elapsed: float = 0.0):
    """Log a pipeline failure with its stage and category."""
    stage = getattr(error, "stage", None)
    stage_name = stage.value if stage else "unknown"
    logger.error(
        f"[{job_id}] failed in stage '{stage_name}' after {elapsed:.1f}s "
        f"({categorize(error).value}): {error}"
    )
