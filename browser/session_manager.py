#!/usr/bin/env python3
"""
Browser Session Manager

Owns the single shared Chromium process (a persistent context, so the editor
login survives restarts) and hands out one page per job.

Example:
    sessions = SessionManager(SessionConfig(profile_dir=Path("profile")), registry)
    session = await sessions.acquire()
    page = await sessions.new_page(session, editor.url)
    try:
        ...
    finally:
        await sessions.close_page(session, page)   # also releases the editor
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from playwright.async_api import Error as PlaywrightError, async_playwright

from core.editor_registry import EditorRegistry
from core.error_handler import SessionLaunchFailed

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    "--start-maximized",
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
]


@dataclass
class SessionConfig:
    """Launch settings for the persistent browser context."""
    profile_dir: Path
    downloads_dir: Path = Path("downloads")
    headless: bool = False
    executable_path: Optional[str] = None
    viewport_width: int = 1280
    viewport_height: int = 720
    launch_args: List[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))

    @property
    def viewport(self) -> Dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}


@dataclass
class BrowserSession:
    """A live persistent browser context."""
    session_id: str
    playwright: Any
    context: Any
    created_at: datetime = field(default_factory=datetime.now)


class SessionManager:
    """Keeps at most one live BrowserSession and tracks which page serves which editor."""

    def __init__(
        self,
        config: SessionConfig,
        registry: EditorRegistry,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        self.config = config
        self.registry = registry
        self.playwright_factory = playwright_factory
        self.session: Optional[BrowserSession] = None
        self._page_editors: Dict[Any, Optional[str]] = {}
        self._saves: Dict[Any, Set[asyncio.Task]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self) -> BrowserSession:
        """Return the current session if it still answers, otherwise launch a new one."""
        async with self._lock:
            if self.session is not None:
                if await self._is_alive(self.session):
                    logger.debug(f"Reusing browser session {self.session.session_id}")
                    return self.session
                logger.warning(f"Browser session {self.session.session_id} is gone; relaunching")
                await self._close_session(self.session)
                self.session = None
            self.session = await self._launch()
            return self.session

    async def _is_alive(self, session: BrowserSession) -> bool:
        try:
            await session.context.cookies()
            return True
        except PlaywrightError as e:
            logger.debug(f"Liveness probe failed: {e}")
            return False

    async def _launch(self) -> BrowserSession:
        cfg = self.config
        cfg.profile_dir.mkdir(parents=True, exist_ok=True)
        cfg.downloads_dir.mkdir(parents=True, exist_ok=True)
        playwright = None
        try:
            playwright = await self.playwright_factory().start()
            options = {
                "headless": cfg.headless,
                "accept_downloads": True,
                "viewport": cfg.viewport,
                "args": cfg.launch_args,
            }
            if cfg.executable_path:
                options["executable_path"] = cfg.executable_path
            context = await playwright.chromium.launch_persistent_context(str(cfg.profile_dir), **options)
        except PlaywrightError as e:
            if playwright is not None:
                await playwright.stop()
            raise SessionLaunchFailed(f"Failed to launch browser: {e}") from e

        session = BrowserSession(session_id=uuid.uuid4().hex[:8], playwright=playwright, context=context)
        logger.info(f"Launched browser session {session.session_id} (profile: {cfg.profile_dir})")
        return session

    async def new_page(self, session: BrowserSession, editor_url: Optional[str] = None):
        """Open a tab for one job; browser downloads land in the downloads dir under their own name."""
        page = await session.context.new_page()
        await page.set_viewport_size(self.config.viewport)
        page.on("download", lambda download: self._track_save(page, download))
        self._page_editors[page] = editor_url
        return page

    def _track_save(self, page, download):
        saves = self._saves.setdefault(page, set())
        task = asyncio.ensure_future(self._save_download(download))
        saves.add(task)
        task.add_done_callback(saves.discard)
        return task

    async def _finish_saves(self, page):
        pending = self._saves.pop(page, set())
        if not pending:
            return
        logger.info(f"Waiting for {len(pending)} download(s) to finish saving")
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Download save failed: {result}")

    async def _save_download(self, download):
        target = self.config.downloads_dir / download.suggested_filename
        try:
            await download.save_as(str(target))
            logger.info(f"Saved download: {target.name}")
        except (PlaywrightError, OSError) as e:
            logger.error(f"Failed to save download {download.suggested_filename}: {e}")

    async def close_page(self, session: Optional[BrowserSession], page):
        """Close a job's tab and release the editor it was opened for."""
        editor_url = self._page_editors.pop(page, None)
        try:
            await self._finish_saves(page)
            if page is not None and not page.is_closed():
                await page.close()
        except PlaywrightError as e:
            logger.error(f"Error closing page: {e}")
        finally:
            if editor_url:
                await self.registry.release(editor_url)

    async def _close_session(self, session: BrowserSession):
        try:
            await session.context.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing browser context: {e}")
        try:
            await session.playwright.stop()
        except PlaywrightError as e:
            logger.debug(f"Error stopping playwright: {e}")

    async def dispose(self):
        """Close the browser. Pages still open are released first."""
        for page in list(self._page_editors):
            await self.close_page(self.session, page)
        if self.session is not None:
            await self._close_session(self.session)
            logger.info(f"Closed browser session {self.session.session_id}")
            self.session = None
