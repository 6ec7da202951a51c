#!/usr/bin/env python3
"""
Job Driver - runs one video through the editor from admission to download.

    driver = JobDriver(registry, sessions, catalog, progress, screenshots)
    result = await driver.run(Path("uploads/clip.mp4"))

Admission happens before anything touches the browser; from then on every
exit path hands the editor back to the registry.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from browser.locators import SelectorResolver
from browser.session_manager import SessionManager
from .catalog import VideoCatalog
from .detectors import SYSTEM_CLOCK, Clock
from .editor_registry import EditorRegistry
from .error_handler import (
    NavigationFailed,
    NoResourceAvailable,
    PipelineError,
    StageFailed,
    VideoFileNotFound,
    log_failure,
    status_for_failure,
)
from .models import Editor, JobResult, Stage, VideoJob, VideoStatus
from .progress import ProgressBroadcaster
from .screenshot_manager import ScreenshotContext, ScreenshotManager
from .workflow import EditorWorkflow, WorkflowConfig

logger = logging.getLogger(__name__)


class JobDriver:
    """Admits, runs and settles editing jobs."""

    def __init__(
        self,
        registry: EditorRegistry,
        sessions: SessionManager,
        catalog: VideoCatalog,
        progress: Optional[ProgressBroadcaster] = None,
        screenshots: Optional[ScreenshotManager] = None,
        workflow_config: Optional[WorkflowConfig] = None,
        resolver: Optional[SelectorResolver] = None,
        clock: Clock = SYSTEM_CLOCK,
        navigation_timeout: float = 60.0,
    ):
        self.registry = registry
        self.sessions = sessions
        self.catalog = catalog
        self.progress = progress or ProgressBroadcaster()
        self.screenshots = screenshots
        self.workflow_config = workflow_config or WorkflowConfig()
        self.resolver = resolver or SelectorResolver(progress=self.progress, clock=clock)
        self.clock = clock
        self.navigation_timeout = navigation_timeout
        self.download_lock = asyncio.Lock()

    async def run(self, video_path: Path) -> JobResult:
        """Admit an editor and process one video. Raises NoResourceAvailable when none is free."""
        self.progress("🚀 Starting editor automation pipeline...")
        try:
            editor = await self.registry.admit()
        except NoResourceAvailable:
            self.progress("❌ No editors available. All editors are currently in-use.")
            raise
        return await self.process(Path(video_path), editor)

    async def submit(self, video_path: Path) -> "asyncio.Task[JobResult]":
        """Admit now, process in the background."""
        editor = await self.registry.admit()
        return asyncio.create_task(self.process(Path(video_path), editor))

    async def process(self, video_path: Path, editor: Editor) -> JobResult:
        """Run the workflow on an already admitted editor; always releases it."""
        job = VideoJob(video_path=video_path, editor=editor)
        started = time.monotonic()
        session = None
        page = None
        try:
            try:
                if not video_path.exists():
                    raise VideoFileNotFound(
                        f"Video file not found at {video_path}. Please ensure it was uploaded correctly.",
                        stage=Stage.IDLE,
                    )
                self.catalog.set_status(job.file_name, VideoStatus.PROCESSING)

                session = await self.sessions.acquire()
                page = await self.sessions.new_page(session, editor.url)
                await self._navigate(page, editor.url)

                workflow = EditorWorkflow(
                    page, job,
                    resolver=self.resolver,
                    config=self.workflow_config,
                    progress=self.progress,
                    catalog=self.catalog,
                    download_lock=self.download_lock,
                    clock=self.clock,
                )
                await workflow.run()
            except PipelineError as e:
                await self._settle_failure(job, e, page, time.monotonic() - started)
                raise
            except PlaywrightError as e:
                error = StageFailed(str(e), stage=job.stage)
                await self._settle_failure(job, error, page, time.monotonic() - started)
                raise error from e
            except Exception as e:
                logger.exception(f"[{job.job_id}] unexpected error")
                error = StageFailed(f"{type(e).__name__}: {e}", stage=job.stage)
                await self._settle_failure(job, error, page, time.monotonic() - started)
                raise error from e

            status = VideoStatus.EXPORTED if job.downloaded_path else VideoStatus.RMBG
            self.catalog.set_status(job.file_name, status)
            logger.info(f"[{job.job_id}] completed in {time.monotonic() - started:.1f}s")
            return JobResult.from_job(job, status, message="Video processed successfully")
        finally:
            if page is not None:
                await self.sessions.close_page(session, page)
            await self.registry.release(editor)

    async def _navigate(self, page, url: str):
        self.progress("🌐 Navigating to the editor...")
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout * 1000)
        except PlaywrightError as e:
            raise NavigationFailed(f"Could not load editor page: {e}", stage=Stage.IDLE) from e
        self.progress("✅ Page loaded successfully!")

    async def _settle_failure(self, job: VideoJob, error: PipelineError, page, elapsed: float) -> PipelineError:
        """Record a failed job: screenshot, catalog status, result attached to the error."""
        stage = error.stage or job.failed_stage or job.stage
        error.stage = stage
        if job.failed_stage is None:
            job.fail(stage, str(error))
        log_failure(error, job.job_id, elapsed)

        screenshot_path = None
        if page is not None and self.screenshots is not None:
            shot = await self.screenshots.capture(page, ScreenshotContext(job_id=job.job_id, stage=stage.value))
            if shot:
                screenshot_path = str(shot.path)

        status = status_for_failure(stage)
        self.catalog.set_status(job.file_name, status)
        self.progress(f"❌ Automation failed at {stage.value}: {error}")
        error.result = JobResult.from_job(job, status, message=str(error), screenshot_path=screenshot_path)
        return error
