"""
Tests for job admission, failure settlement and editor release.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

from core.editor_registry import EditorRegistry
from core.error_handler import NavigationFailed, NoResourceAvailable, StageFailed, StageTimeout, VideoFileNotFound
from core.job_driver import JobDriver
from core.models import Stage, VideoStatus
from core.progress import ProgressBroadcaster
from tests.fakes import write_editors


def workflow_doing(behaviour):
    """Stand-in EditorWorkflow whose run() delegates to `behaviour(job)`."""

    class FakeWorkflow:
        instances = []

        def __init__(self, page, job, **kwargs):
            self.page = page
            self.job = job
            self.kwargs = kwargs
            FakeWorkflow.instances.append(self)

        async def run(self):
            await behaviour(self.job)
            return self.job

    return FakeWorkflow


async def succeed(job):
    job.enter(Stage.DONE)
    job.downloaded_path = Path("downloads") / job.file_name


def fail_at(stage):
    async def behaviour(job):
        job.enter(stage)
        job.fail(stage, "boom")
        raise StageTimeout("Timed out after 600s waiting for the render to finish", stage=stage)
    return behaviour


@pytest.fixture
def screenshots(tmp_path):
    manager = MagicMock()
    manager.capture = AsyncMock(return_value=MagicMock(path=tmp_path / "debug" / "shot.png"))
    return manager


@pytest.fixture
def driver(registry, mock_sessions, catalog, fake_page, screenshots, clock):
    mock_sessions.new_page = AsyncMock(return_value=fake_page)
    return JobDriver(registry, mock_sessions, catalog, progress=ProgressBroadcaster(),
                     screenshots=screenshots, clock=clock)


def marker(catalog, video_file, status):
    return catalog.uploads_dir / f"{video_file.stem}_{status.value}.marker"


class TestSuccessfulJob:

    @pytest.mark.asyncio
    async def test_exported_and_released(self, driver, registry, catalog, video_file, fake_page):
        with patch("core.job_driver.EditorWorkflow", workflow_doing(succeed)):
            result = await driver.run(video_file)

        assert result.success
        assert result.status == VideoStatus.EXPORTED
        assert marker(catalog, video_file, VideoStatus.PROCESSING).exists()
        assert marker(catalog, video_file, VideoStatus.EXPORTED).exists()
        assert registry.counts()["available"] == 2
        fake_page.goto.assert_awaited_once_with(
            registry.all()[0].url, wait_until="networkidle", timeout=60000.0
        )
        driver.sessions.close_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_workflow_shares_download_lock(self, driver, video_file):
        workflow_cls = workflow_doing(succeed)
        with patch("core.job_driver.EditorWorkflow", workflow_cls):
            await driver.run(video_file)

        assert workflow_cls.instances[0].kwargs["download_lock"] is driver.download_lock

    @pytest.mark.asyncio
    async def test_submit_admits_before_processing(self, driver, registry, video_file):
        with patch("core.job_driver.EditorWorkflow", workflow_doing(succeed)):
            task = await driver.submit(video_file)
            assert registry.counts()["in_use"] == 1
            result = await task

        assert result.success
        assert registry.counts()["in_use"] == 0


class TestFailedJob:

    @pytest.mark.asyncio
    async def test_failure_after_cutout_is_filed(self, driver, registry, catalog, video_file, screenshots):
        with patch("core.job_driver.EditorWorkflow", workflow_doing(fail_at(Stage.EXPORT_INVOKED))):
            with pytest.raises(StageTimeout) as exc_info:
                await driver.run(video_file)

        error = exc_info.value
        assert error.stage == Stage.EXPORT_INVOKED
        assert error.result.status == VideoStatus.FILED
        assert error.result.screenshot_path.endswith("shot.png")
        assert marker(catalog, video_file, VideoStatus.FILED).exists()
        context = screenshots.capture.await_args.args[1]
        assert context.stage == "export_invoked"
        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_failure_before_cutout_is_failed(self, driver, catalog, video_file):
        with patch("core.job_driver.EditorWorkflow", workflow_doing(fail_at(Stage.SPLIT))):
            with pytest.raises(StageTimeout) as exc_info:
                await driver.run(video_file)

        assert exc_info.value.result.status == VideoStatus.FAILED
        assert not exc_info.value.result.success
        assert marker(catalog, video_file, VideoStatus.FAILED).exists()

    @pytest.mark.asyncio
    async def test_failure_at_cutout_wait_is_failed(self, driver, video_file):
        with patch("core.job_driver.EditorWorkflow", workflow_doing(fail_at(Stage.WAIT_CUTOUT_COMPLETE))):
            with pytest.raises(StageTimeout) as exc_info:
                await driver.run(video_file)

        assert exc_info.value.result.status == VideoStatus.FAILED

    @pytest.mark.asyncio
    async def test_raw_browser_error_wrapped(self, driver, registry, video_file):
        async def crash(job):
            job.enter(Stage.UPLOADING)
            raise PlaywrightError("Browser closed")

        with patch("core.job_driver.EditorWorkflow", workflow_doing(crash)):
            with pytest.raises(StageFailed) as exc_info:
                await driver.run(video_file)

        assert exc_info.value.stage == Stage.UPLOADING
        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_is_settled(self, driver, registry, catalog, video_file, screenshots):
        async def crash(job):
            job.enter(Stage.POSITIONED_ON_TRACK2)
            raise TypeError("'NoneType' object is not subscriptable")

        with patch("core.job_driver.EditorWorkflow", workflow_doing(crash)):
            with pytest.raises(StageFailed) as exc_info:
                await driver.run(video_file)

        error = exc_info.value
        assert error.stage == Stage.POSITIONED_ON_TRACK2
        assert "TypeError" in str(error)
        assert error.result.status == VideoStatus.FAILED
        assert error.result.screenshot_path is not None
        assert marker(catalog, video_file, VideoStatus.FAILED).exists()
        assert catalog.status_of(video_file.stem) == VideoStatus.FAILED
        screenshots.capture.assert_awaited_once()
        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_navigation_failure(self, driver, registry, video_file, fake_page):
        fake_page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

        with pytest.raises(NavigationFailed) as exc_info:
            await driver.run(video_file)

        assert exc_info.value.stage == Stage.IDLE
        assert exc_info.value.result.status == VideoStatus.FAILED
        driver.sessions.close_page.assert_awaited_once()
        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_missing_video_releases_editor(self, driver, registry, tmp_path):
        with pytest.raises(VideoFileNotFound):
            await driver.run(tmp_path / "uploads" / "ghost.mp4")

        driver.sessions.acquire.assert_not_awaited()
        driver.screenshots.capture.assert_not_awaited()
        assert registry.counts()["available"] == 2


class TestAdmission:

    @pytest.mark.asyncio
    async def test_no_editor_rejected_before_browser(self, tmp_path, mock_sessions, catalog, video_file):
        registry = EditorRegistry(write_editors(tmp_path / "editors.json", ["in-use", "in-use"]))
        progress = ProgressBroadcaster()
        driver = JobDriver(registry, mock_sessions, catalog, progress=progress)

        with pytest.raises(NoResourceAvailable):
            await driver.run(video_file)

        mock_sessions.acquire.assert_not_awaited()
        assert any("No editors available" in e.message for e in progress.recent())
        assert registry.counts()["in_use"] == 2
