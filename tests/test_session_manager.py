"""
Tests for the shared browser session.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from browser.session_manager import SessionConfig, SessionManager
from core.error_handler import SessionLaunchFailed
from tests.fakes import EDITOR_URLS


def fake_playwright(context=None, launch_error=None):
    """async_playwright() stand-in: factory().start() -> playwright with chromium."""
    playwright = MagicMock()
    playwright.stop = AsyncMock()
    if launch_error:
        playwright.chromium.launch_persistent_context = AsyncMock(side_effect=launch_error)
    else:
        playwright.chromium.launch_persistent_context = AsyncMock(return_value=context or fake_context())
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    factory = MagicMock(return_value=starter)
    return factory, playwright


def fake_context(page=None):
    context = MagicMock()
    context.cookies = AsyncMock(return_value=[])
    context.close = AsyncMock()
    context.new_page = AsyncMock(return_value=page or MagicMock())
    return context


@pytest.fixture
def session_config(tmp_path):
    return SessionConfig(profile_dir=tmp_path / "profile", downloads_dir=tmp_path / "downloads",
                         executable_path="/usr/bin/google-chrome")


class TestAcquire:

    @pytest.mark.asyncio
    async def test_launches_persistent_context(self, session_config, registry):
        factory, playwright = fake_playwright()
        sessions = SessionManager(session_config, registry, playwright_factory=factory)

        session = await sessions.acquire()

        args, kwargs = playwright.chromium.launch_persistent_context.await_args
        assert args[0] == str(session_config.profile_dir)
        assert kwargs["accept_downloads"] is True
        assert kwargs["headless"] is False
        assert kwargs["executable_path"] == "/usr/bin/google-chrome"
        assert kwargs["viewport"] == {"width": 1280, "height": 720}
        assert session_config.downloads_dir.is_dir()
        assert sessions.session is session

    @pytest.mark.asyncio
    async def test_live_session_reused(self, session_config, registry):
        factory, _ = fake_playwright()
        sessions = SessionManager(session_config, registry, playwright_factory=factory)

        first = await sessions.acquire()
        second = await sessions.acquire()

        assert first is second
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_dead_session_relaunched(self, session_config, registry):
        factory, _ = fake_playwright()
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        first = await sessions.acquire()
        first.context.cookies = AsyncMock(side_effect=PlaywrightError("Target closed"))

        second = await sessions.acquire()

        assert second is not first
        assert factory.call_count == 2
        first.playwright.stop.assert_awaited()

    @pytest.mark.asyncio
    async def test_launch_failure(self, session_config, registry):
        factory, playwright = fake_playwright(launch_error=PlaywrightError("Executable doesn't exist"))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)

        with pytest.raises(SessionLaunchFailed):
            await sessions.acquire()

        playwright.stop.assert_awaited_once()
        assert sessions.session is None


class TestPages:

    @pytest.mark.asyncio
    async def test_close_page_releases_editor(self, session_config, registry, fake_page):
        factory, _ = fake_playwright(context=fake_context(fake_page))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        editor = await registry.admit()
        session = await sessions.acquire()

        page = await sessions.new_page(session, editor.url)
        fake_page.on.assert_called_once()
        assert fake_page.on.call_args.args[0] == "download"
        await sessions.close_page(session, page)

        fake_page.close.assert_awaited_once()
        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_release_survives_close_error(self, session_config, registry, fake_page):
        fake_page.close = AsyncMock(side_effect=PlaywrightError("Target closed"))
        factory, _ = fake_playwright(context=fake_context(fake_page))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        editor = await registry.admit()
        session = await sessions.acquire()

        page = await sessions.new_page(session, editor.url)
        await sessions.close_page(session, page)

        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_download_saved_under_suggested_name(self, session_config, registry):
        sessions = SessionManager(session_config, registry)
        download = MagicMock()
        download.suggested_filename = "My Clip.mp4"
        download.save_as = AsyncMock()

        await sessions._save_download(download)

        download.save_as.assert_awaited_once_with(str(session_config.downloads_dir / "My Clip.mp4"))

    @pytest.mark.asyncio
    async def test_close_page_waits_for_pending_save(self, session_config, registry, fake_page):
        factory, _ = fake_playwright(context=fake_context(fake_page))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        session = await sessions.acquire()
        page = await sessions.new_page(session, EDITOR_URLS[0])
        order = []
        saving = asyncio.Event()

        async def slow_save(path):
            saving.set()
            await asyncio.sleep(0.01)
            order.append("saved")

        download = MagicMock()
        download.suggested_filename = "My Clip.mp4"
        download.save_as = slow_save
        fake_page.close = AsyncMock(side_effect=lambda: order.append("closed"))

        on_download = fake_page.on.call_args.args[1]
        task = on_download(download)
        await saving.wait()
        await sessions.close_page(session, page)

        assert order == ["saved", "closed"]
        assert task.done()

    @pytest.mark.asyncio
    async def test_failed_save_is_logged_not_raised(self, session_config, registry, fake_page):
        factory, _ = fake_playwright(context=fake_context(fake_page))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        session = await sessions.acquire()
        page = await sessions.new_page(session, EDITOR_URLS[0])
        download = MagicMock()
        download.suggested_filename = "My Clip.mp4"
        download.save_as = AsyncMock(side_effect=OSError("disk full"))

        fake_page.on.call_args.args[1](download)
        await sessions.close_page(session, page)

        fake_page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dispose_closes_open_pages(self, session_config, registry, fake_page):
        factory, playwright = fake_playwright(context=fake_context(fake_page))
        sessions = SessionManager(session_config, registry, playwright_factory=factory)
        await registry.lease(EDITOR_URLS[1])
        session = await sessions.acquire()
        await sessions.new_page(session, EDITOR_URLS[1])

        await sessions.dispose()

        assert sessions.session is None
        session.context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert registry.counts()["in_use"] == 0
