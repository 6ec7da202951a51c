"""
Failure screenshots.

When a job fails the page is captured into the debug folder, named after the
job and the stage it failed in, so the folder reads like a failure log. The
folder is pruned to the newest `keep` captures; the service runs for days.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError, Page

logger = logging.getLogger(__name__)


@dataclass
class ScreenshotContext:
    """Which job and stage a capture belongs to."""
    job_id: str
    stage: str
    label: str = "failure"
    taken_at: datetime = field(default_factory=datetime.now)

    def file_name(self) -> str:
        stamp = self.taken_at.strftime("%Y%m%d_%H%M%S")
        return f"{self.job_id}_{self.stage}_{self.label}_{stamp}.png"


@dataclass
class CapturedScreenshot:
    path: Path
    context: ScreenshotContext
    page_url: Optional[str] = None
    full_page: bool = True


@dataclass
class ScreenshotConfig:
    base_dir: Path
    full_page: bool = True
    keep: int = 200


class ScreenshotManager:
    """
    Captures failure screenshots.

        manager = ScreenshotManager(ScreenshotConfig(base_dir=Path("./debug")))
        shot = await manager.capture(page, ScreenshotContext(job_id="a1b2", stage="split"))
    """

    def __init__(self, config: ScreenshotConfig):
        self.config = config

    async def capture(self, page: Page, context: ScreenshotContext) -> Optional[CapturedScreenshot]:
        """Capture the page, or return None if it can no longer be captured."""
        base_dir = Path(self.config.base_dir)
        base_dir.mkdir(parents=True, exist_ok=True)
        path = base_dir / context.file_name()

        full_page = self.config.full_page
        try:
            await page.screenshot(path=str(path), full_page=full_page)
        except PlaywrightError as e:
            if not full_page:
                logger.error(f"[{context.job_id}] screenshot failed: {e}")
                return None
            # full-page capture can fail on very tall pages
            logger.warning(f"[{context.job_id}] full-page screenshot failed, retrying viewport only: {e}")
            full_page = False
            try:
                await page.screenshot(path=str(path))
            except PlaywrightError as e2:
                logger.error(f"[{context.job_id}] screenshot failed: {e2}")
                return None

        logger.info(f"[{context.job_id}] failure screenshot saved: {path}")
        self.prune()
        return CapturedScreenshot(path=path, context=context, page_url=page.url, full_page=full_page)

    def prune(self) -> List[Path]:
        """Delete the oldest captures beyond `keep`. Returns what was removed."""
        base_dir = Path(self.config.base_dir)
        shots = sorted(base_dir.glob("*.png"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = shots[self.config.keep:]
        for old in removed:
            try:
                old.unlink()
            except OSError as e:
                logger.warning(f"Could not remove old screenshot {old.name}: {e}")
        return removed
