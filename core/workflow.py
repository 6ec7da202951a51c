#!/usr/bin/env python3
"""
Editor Workflow - the linear stage machine that turns an uploaded clip into a
background-removed export.

One EditorWorkflow drives one page for one VideoJob. Stages run strictly in
order; the first stage that fails tags the error with its Stage and stops the
run. A few cosmetic stages (rename, zooms, the cutout card) only log a warning
when their control cannot be found.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from browser.locators import Action, SelectorResolver
from .catalog import VideoCatalog
from .detectors import (
    SYSTEM_CLOCK,
    Clock,
    CutoutCompletionDetector,
    DirectoryDiffDetector,
    Fingerprint,
    NamedFileDetector,
    PollPolicy,
    RenderDetector,
    UploadTranscodeDetector,
    filename_from_link,
)
from .error_handler import ActionNotLocatable, PipelineError, StageFailed, StageTimeout
from .models import ClipGeometry, ResizeHandle, Stage, VideoJob, VideoStatus

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 30

MEDIA_LABEL_SELECTOR = 'div[class*="card-item-label"]'

_CANVAS_GEOMETRY_JS = """canvas => {
    const rect = canvas.getBoundingClientRect();
    const timelineEl = document.getElementById('timeline');
    const trackTop = timelineEl
        ? parseInt(getComputedStyle(timelineEl).getPropertyValue('--main-track-top'), 10)
        : NaN;
    return {x: rect.x, y: rect.y, width: rect.width, height: rect.height,
            trackTop: Number.isNaN(trackTop) ? null : trackTop};
}"""

_TIMELINE_RECT_JS = """() => {
    const timeline = document.querySelector('#timeline-part-view');
    if (!timeline) return null;
    const rect = timeline.getBoundingClientRect();
    return {left: rect.left, top: rect.top, width: rect.width, height: rect.height};
}"""

_PLAYER_TIME_JS = """() => {
    const el = document.querySelector('.player-time');
    return el ? el.textContent.trim() : '';
}"""


@dataclass
class WorkflowConfig:
    """Every wait bound, poll interval and settle delay of the workflow (seconds)."""
    downloads_dir: Path = Path("downloads")

    upload_label_timeout: float = 600.0
    upload_transcode: PollPolicy = PollPolicy(1.0, 960.0)
    cutout: PollPolicy = PollPolicy(5.0, 420.0)
    render: PollPolicy = PollPolicy(15.0, 600.0)
    download: PollPolicy = PollPolicy(2.0, 900.0)

    rename_settle: float = 37.0
    track2_settle: float = 6.0
    trim_settle: float = 5.0
    cutout_settle: float = 7.0
    export_settle: float = 10.0
    download_click_settle: float = 9.0
    short_pause: float = 0.5
    zoom_pause: float = 0.3

    target_seconds: float = 30.0
    pixels_per_second: float = 30.0
    drag_steps: int = 20
    track_height: float = 50.0

    zoom_in_clicks: int = 5
    zoom_out_clicks: int = 7
    region_zoom_in_clicks: int = 2
    cutout_zoom_out_clicks: int = 5


def compute_drag_distance(handle_x: float, canvas_x: float,
                          target_seconds: float = 30.0, pixels_per_second: float = 30.0) -> int:
    """
    Pixels to drag the clip's right edge so it spans `target_seconds`.

    Negative or zero means the clip is already long enough.
    """
    current_width = handle_x - canvas_x
    return math.floor(target_seconds * pixels_per_second - current_width + 0.5)


async def trim_to_duration(page, handle: ResizeHandle, distance: int, steps: int = 20,
                           pause: Callable[[float], Awaitable[None]] = asyncio.sleep) -> bool:
    """Drag the resize handle right by `distance` px. Returns False when no drag was needed."""
    if distance <= 0:
        logger.info(f"No drag needed (distance {distance}px)")
        return False
    logger.info(f"Dragging {distance}px to extend the clip")
    await page.mouse.move(handle.x, handle.y)
    await pause(0.1)
    await page.mouse.down()
    await pause(0.1)
    await page.mouse.move(handle.x + distance, handle.y, steps=steps)
    await pause(0.1)
    await page.mouse.up()
    return True


def parse_hms(text: str, default: int = DEFAULT_DURATION_SECONDS) -> int:
    """
    Total seconds of the duration half of a player time display.

    >>> parse_hms("00:00:05 / 00:01:30")
    90
    """
    if not text:
        return default
    parts = text.split(" / ")
    value = parts[1] if len(parts) > 1 else parts[0]
    try:
        fields = [int(float(p)) for p in value.strip().split(":")][:3]
    except ValueError:
        return default
    seconds = 0
    for f in fields:
        seconds = seconds * 60 + f
    return seconds if fields else default


class EditorWorkflow:
    """Runs every editing stage for one job on one page."""

    def __init__(
        self,
        page,
        job: VideoJob,
        resolver: Optional[SelectorResolver] = None,
        config: Optional[WorkflowConfig] = None,
        progress: Optional[Callable[[str], object]] = None,
        catalog: Optional[VideoCatalog] = None,
        download_lock: Optional[asyncio.Lock] = None,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.page = page
        self.job = job
        self.config = config or WorkflowConfig()
        self.progress = progress
        self.resolver = resolver or SelectorResolver(progress=progress, clock=clock)
        self.catalog = catalog
        self.download_lock = download_lock or asyncio.Lock()
        self.clock = clock

        self.geometry: Optional[ClipGeometry] = None
        self.snapshot: Dict[str, Fingerprint] = {}

        cfg = self.config
        self.upload_detector = UploadTranscodeDetector(cfg.upload_transcode, clock)
        self.cutout_detector = CutoutCompletionDetector(cfg.cutout, clock)
        self.render_detector = RenderDetector(cfg.render, clock)

    # --- plumbing ---

    def emit(self, message: str):
        self.job.messages.append(message)
        if self.progress:
            self.progress(message)

    async def sleep(self, seconds: float):
        if seconds > 0:
            await self.clock.sleep(seconds)

    def stages(self) -> List[Tuple[Stage, Callable[[], Awaitable[None]]]]:
        return [
            (Stage.UPLOADING, self.upload),
            (Stage.WAIT_UPLOAD_TRANSCODE, self.wait_upload_transcode),
            (Stage.PLACED_ON_TIMELINE, self.place_on_timeline),
            (Stage.PROJECT_RENAMED, self.rename_project),
            (Stage.ZOOMED_IN, self.zoom_in),
            (Stage.POSITIONED_ON_TRACK2, self.position_on_track2),
            (Stage.PLAYHEAD_RESET, self.reset_playhead),
            (Stage.ZOOMED_OUT, self.zoom_out),
            (Stage.DURATION_TRIMMED, self.trim_duration),
            (Stage.SPLIT, self.split),
            (Stage.RIGHT_SEGMENT_SELECTED, self.select_right_segment),
            (Stage.RIGHT_SEGMENT_DELETED, self.delete_right_segment),
            (Stage.REGION_SELECTED, self.select_region),
            (Stage.CUTOUT_INVOKED, self.invoke_cutout),
            (Stage.CUTOUT_ENABLED, self.enable_cutout),
            (Stage.WAIT_CUTOUT_COMPLETE, self.wait_cutout_complete),
            (Stage.EXPORT_INVOKED, self.invoke_export),
            (Stage.DOWNLOAD_INVOKED, self.invoke_download),
            (Stage.EXPORT_CONFIRMED, self.confirm_export),
            (Stage.WAIT_DOWNLOAD_READY, self.wait_download_ready),
        ]

    async def run(self) -> VideoJob:
        """Run all stages. Raises a PipelineError tagged with the failing stage."""
        stages = self.stages()
        locked_from = next(i for i, (stage, _) in enumerate(stages) if stage == Stage.DOWNLOAD_INVOKED)

        for stage, handler in stages[:locked_from]:
            await self._run_stage(stage, handler)

        # One download at a time, so directory snapshots of concurrent jobs never overlap
        async with self.download_lock:
            for stage, handler in stages[locked_from:]:
                await self._run_stage(stage, handler)

        self.job.enter(Stage.DONE)
        self.emit(f"🎉 Finished processing {self.job.file_name}")
        return self.job

    async def _run_stage(self, stage: Stage, handler: Callable[[], Awaitable[None]]):
        self.job.enter(stage)
        self.emit(f"▶️ [{stage.position}/{Stage.WAIT_DOWNLOAD_READY.position}] {stage.value}")
        try:
            await handler()
        except PipelineError as e:
            if e.stage is None:
                e.stage = stage
            self.job.fail(stage, f"{e} (after {self.job.stage_elapsed():.1f}s)")
            raise
        except PlaywrightError as e:
            raise self._stage_failed(stage, e) from e
        except Exception as e:
            logger.exception(f"[{self.job.job_id}] unexpected error in stage {stage.value}")
            raise self._stage_failed(stage, e) from e
        self.emit(f"⏱️ {stage.value} done in {self.job.stage_elapsed():.1f}s")

    def _stage_failed(self, stage: Stage, cause: Exception) -> StageFailed:
        elapsed = self.job.stage_elapsed()
        error = StageFailed(f"{stage.value}: {type(cause).__name__}: {cause}", stage=stage)
        self.job.fail(stage, f"{error} (after {elapsed:.1f}s)")
        return error

    async def best_effort(self, description: str, step: Callable[[], Awaitable[object]]) -> bool:
        """Run an optional step; a missing control only produces a warning."""
        try:
            await step()
            return True
        except (ActionNotLocatable, PlaywrightError) as e:
            logger.warning(f"Could not {description}, continuing: {e}")
            self.emit(f"⚠️ Could not {description}, continuing...")
            return False

    async def click_repeatedly(self, action: Action, times: int):
        for _ in range(times):
            await self.resolver.click(self.page, action)
            await self.sleep(self.config.zoom_pause)

    def media_label(self):
        name = self.job.file_name
        return self.page.locator(MEDIA_LABEL_SELECTOR).filter(
            has_text=re.compile(rf"^\s*{re.escape(name)}\s*$")
        ).first

    def media_item(self):
        return self.media_label().locator("xpath=..")

    async def measure_canvas(self) -> ClipGeometry:
        resolution = await self.resolver.resolve(self.page, Action.TIMELINE_CANVAS)
        box = await resolution.handle.evaluate(_CANVAS_GEOMETRY_JS)
        geometry = ClipGeometry(
            x=box["x"], y=box["y"], width=box["width"], height=box["height"],
            track_top=box.get("trackTop") or 87,
        )
        logger.info(f"Canvas geometry: {geometry}")
        return geometry

    # --- stages ---

    async def upload(self):
        name = self.job.file_name
        self.emit(f"📤 Starting upload process for: {name}")
        await self.resolver.click(self.page, Action.UPLOAD_BUTTON)
        async with self.page.expect_file_chooser(timeout=10000) as chooser_info:
            await self.resolver.click(self.page, Action.UPLOAD_FILE_BUTTON)
        chooser = await chooser_info.value
        await chooser.set_files(str(self.job.video_path))

        logger.info(f"File '{name}' accepted, waiting for it in the media panel")
        try:
            await self.media_label().wait_for(
                state="attached", timeout=self.config.upload_label_timeout * 1000
            )
        except PlaywrightTimeoutError as e:
            raise StageTimeout(f"Uploaded video '{name}' never appeared in the media panel") from e

    async def wait_upload_transcode(self):
        await self.upload_detector.wait(self.media_item(), self.emit)
        self.emit(f"✅ SUCCESS: Video \"{self.job.file_name}\" uploaded and transcoded!")

    async def place_on_timeline(self):
        await self.media_item().click()
        self.emit("🎬 Successfully added video to the timeline!")

    async def rename_project(self):
        stem = self.job.stem
        self.emit(f"📝 Changing project name to: {stem}")

        async def rename():
            await self.resolver.click(self.page, Action.PROJECT_NAME)
            await self.sleep(self.config.short_pause)
            await self.page.keyboard.press("Control+A")
            await self.page.keyboard.type(stem)
            await self.page.keyboard.press("Enter")

        if await self.best_effort("change the project name", rename):
            self.emit(f"✅ Project name changed to: {stem}")
            await self.sleep(self.config.rename_settle)

    async def zoom_in(self):
        await self.best_effort(
            "zoom in the timeline",
            lambda: self.click_repeatedly(Action.ZOOM_IN, self.config.zoom_in_clicks),
        )
        await self.best_effort(
            "click the timeline canvas",
            lambda: self.resolver.click(self.page, Action.TIMELINE_CANVAS),
        )

    async def position_on_track2(self):
        await self.sleep(self.config.track2_settle)
        box = None
        try:
            clip = await self.resolver.resolve(self.page, Action.TIMELINE_CLIP)
            box = await clip.handle.bounding_box()
        except ActionNotLocatable:
            logger.info("Timeline clip not found")
        if box:
            x, y = box["x"] + box["width"] / 2, box["y"] + box["height"] / 2
        else:
            # clip is hidden or was re-rendered
            logger.info("No clip box, using canvas position")
            geometry = await self.measure_canvas()
            x, y = geometry.x + 100, geometry.y + geometry.height * 0.5

        track2_y = y - self.config.track_height
        mouse = self.page.mouse
        await mouse.move(x, y)
        await mouse.down()
        await self.sleep(0.5)
        await mouse.move(x, track2_y, steps=10)
        await self.sleep(0.2)
        await mouse.move(x + 10, track2_y, steps=5)
        await mouse.up()
        await self.sleep(2)
        self.emit("📍 SUCCESS: Clip moved to Track 2!")

    async def reset_playhead(self):
        self.emit("⏯️ Moving playhead to start and beginning timeline edits...")
        rect = await self.page.evaluate(_TIMELINE_RECT_JS)
        if not rect:
            logger.warning("Timeline element not found, playhead not moved")
            return
        await self.page.mouse.click(rect["left"] + 50, rect["top"] + rect["height"] / 2)
        await self.sleep(1)

    async def zoom_out(self):
        await self.best_effort(
            "zoom out the timeline",
            lambda: self.click_repeatedly(Action.ZOOM_OUT, self.config.zoom_out_clicks),
        )

    async def trim_duration(self):
        cfg = self.config
        self.emit("✂️ Starting timeline editing automation...")
        self.geometry = geometry = await self.measure_canvas()
        await self.sleep(cfg.trim_settle)

        duration = parse_hms(await self.page.evaluate(_PLAYER_TIME_JS))
        logger.info(f"Video duration: {duration} seconds")
        rect = await self.page.evaluate(_TIMELINE_RECT_JS)
        if rect:
            fraction = (duration - 1) / duration if duration > 0 else 0.99
            await self.page.mouse.click(rect["left"] + fraction * rect["width"], rect["top"] + rect["height"] / 2)
            await self.sleep(cfg.short_pause)

        await self.page.mouse.click(geometry.x + 20, geometry.track_center_y)
        await self.sleep(1)

        found = await self.resolver.resolve(self.page, Action.RESIZE_HANDLE, geometry)
        handle = ResizeHandle(*found.point)
        distance = compute_drag_distance(handle.x, geometry.x, cfg.target_seconds, cfg.pixels_per_second)
        if await trim_to_duration(self.page, handle, distance, cfg.drag_steps, pause=self.sleep):
            self.emit(f"↔️ Clip extended by {distance}px to {cfg.target_seconds:.0f}s")

    async def split(self):
        await self.resolver.click(self.page, Action.SPLIT_BUTTON)
        await self.sleep(1)
        self.emit("✂️ Clip split")

    async def select_right_segment(self):
        g = self.geometry or await self.measure_canvas()
        await self.page.mouse.click(g.x + g.width - 100, g.track_center_y)
        await self.sleep(self.config.short_pause)

    async def delete_right_segment(self):
        await self.resolver.click(self.page, Action.DELETE_BUTTON)
        await self.sleep(self.config.short_pause)
        self.emit("🗑️ Right segment deleted")

    async def select_region(self):
        await self.best_effort(
            "zoom in before selecting the video",
            lambda: self.click_repeatedly(Action.ZOOM_IN, self.config.region_zoom_in_clicks),
        )
        await self.sleep(self.config.short_pause)
        g = self.geometry or await self.measure_canvas()
        await self.page.mouse.click(g.x + 30, g.y + g.track_top - 25)

    async def invoke_cutout(self):
        await self.sleep(1)
        await self.resolver.click(self.page, Action.CUTOUT_TOOL)
        await self.sleep(2)
        card_clicked = await self.best_effort(
            "select the remove backgrounds option",
            lambda: self.resolver.click(self.page, Action.CUTOUT_CARD),
        )
        if card_clicked:
            self.emit("🎨 Remove backgrounds option selected")
            await self.best_effort(
                "zoom out after selecting cutout",
                lambda: self.click_repeatedly(Action.ZOOM_OUT, self.config.cutout_zoom_out_clicks),
            )
        await self.sleep(1)

    async def enable_cutout(self):
        self.emit("🔍 Searching for the \"Remove Background\" switch...")
        found = await self.resolver.resolve(self.page, Action.CUTOUT_SWITCH)
        if found.handle is not None and await found.handle.get_attribute("aria-checked") == "true":
            logger.info("Cutout switch already on")
        else:
            await found.click(self.page)
        self.emit("🪄 Background removal started")

    async def wait_cutout_complete(self):
        await self.cutout_detector.wait(self.page, self.emit)
        self.emit("✅ Background removal complete")
        if self.catalog:
            self.catalog.set_status(self.job.file_name, VideoStatus.RMBG)
        await self.sleep(self.config.cutout_settle)

    async def invoke_export(self):
        await self.resolver.click(self.page, Action.EXPORT_BUTTON)
        self.emit("📤 SUCCESS: Export process started!")
        await self.sleep(self.config.export_settle)
        try:
            found = await self.resolver.resolve(self.page, Action.VIDEO_NAME_INPUT)
            value = (await found.handle.input_value()).strip()
        except (ActionNotLocatable, PlaywrightError) as e:
            logger.info(f"Could not read the export name: {e}")
            return
        if value:
            self.job.export_name = f"{value}.mp4"
            self.emit(f"📝 Detected video filename: {self.job.export_name}")

    async def invoke_download(self):
        self.snapshot = DirectoryDiffDetector.take_snapshot(self.config.downloads_dir)
        await self.resolver.click(self.page, Action.DOWNLOAD_BUTTON)
        await self.sleep(self.config.download_click_settle)

    async def confirm_export(self):
        await self.resolver.click(self.page, Action.EXPORT_CONFIRM)
        self.emit("⏳ Export confirmed, waiting for render...")

    async def wait_download_ready(self):
        cfg = self.config
        attrs = await self.render_detector.wait(self.page, self.emit)
        name = self.job.export_name or filename_from_link(attrs)

        if name:
            self.emit(f"🔍 Waiting for {name} to download...")
            detector = NamedFileDetector(name, cfg.downloads_dir, policy=cfg.download, clock=self.clock,
                                         snapshot=self.snapshot)
        else:
            self.emit("⏳ WAITING FOR VIDEONAME IN CAPCUT TO DOWNLOAD")
            detector = DirectoryDiffDetector(self.snapshot, cfg.downloads_dir, policy=cfg.download, clock=self.clock)

        self.job.downloaded_path = await detector.wait(self.emit)
        self.emit(f"✅ Downloaded: {self.job.downloaded_path.name}")
