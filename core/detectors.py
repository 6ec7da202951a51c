"""
Completion detectors - bounded polling for remote operations that expose no
completion event (upload + transcode, background removal, render, download).

Every detector takes a PollPolicy and a Clock so tests can run the full
timeout on a virtual clock.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .error_handler import DownloadNotFound, StageTimeout
from .filenames import is_video_file, names_match

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], object]

MIN_DOWNLOAD_BYTES = 1000


@dataclass(frozen=True)
class PollPolicy:
    """How often to check and how long to keep checking (seconds)."""
    interval: float
    timeout: float


class Clock:
    """Wall clock; replaced by a virtual clock in tests."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()


async def poll_until(
    check: Callable[[], Awaitable[object]],
    policy: PollPolicy,
    description: str,
    clock: Clock = SYSTEM_CLOCK,
    on_wait: Optional[Callable[[float], None]] = None,
    error_cls=StageTimeout,
):
    """
    Await `check()` every `policy.interval` until it returns a truthy value.

    Returns that value; raises `error_cls` once `policy.timeout` has elapsed.
    """
    start = clock.monotonic()
    while True:
        result = await check()
        if result:
            return result
        elapsed = clock.monotonic() - start
        if elapsed >= policy.timeout:
            raise error_cls(f"Timed out after {policy.timeout:.0f}s waiting for {description}")
        if on_wait:
            on_wait(elapsed)
        await clock.sleep(policy.interval)


# === DOM detectors ===

STATUS_OVERLAY_SELECTOR = 'div[class*="status-mask"]'

_OVERLAY_GONE_JS = """(node, selector) => {
    const overlay = node.querySelector(selector);
    if (!overlay) return true;
    const rect = overlay.getBoundingClientRect();
    return rect.width === 0 && rect.height === 0;
}"""

_CUTOUT_DONE_JS = """() => {
    const switchEl = document.querySelector('button[role="switch"][aria-checked="true"]');
    if (!switchEl) return false;
    const isLoading = switchEl.classList.contains('lv-switch-loading') || switchEl.querySelector('.lv-icon-loading');
    return !isLoading;
}"""

DOWNLOAD_LINK_SELECTOR = ".downloadBtn-Z6RvjQ a[download]"

_LINK_ATTRS_JS = """a => ({
    download: a.getAttribute('download'),
    href: a.href || '',
    text: (a.textContent || '').trim(),
})"""


class UploadTranscodeDetector:
    """Waits for the processing overlay inside one media item to go away."""

    def __init__(self, policy: PollPolicy = PollPolicy(1.0, 960.0), clock: Clock = SYSTEM_CLOCK,
                 overlay_selector: str = STATUS_OVERLAY_SELECTOR):
        self.policy = policy
        self.clock = clock
        self.overlay_selector = overlay_selector

    async def wait(self, media_item, progress: Optional[ProgressSink] = None):
        """`media_item` is the Locator/ElementHandle of the media card container."""
        async def overlay_gone():
            return await media_item.evaluate(_OVERLAY_GONE_JS, self.overlay_selector)

        def tick(elapsed: float):
            if progress and int(elapsed) % 30 == 0:
                progress(f"⏳ Upload still processing... ({int(elapsed)}s elapsed)")

        await poll_until(
            overlay_gone, self.policy,
            "upload to complete (the status overlay remained visible)",
            clock=self.clock, on_wait=tick,
        )


class CutoutCompletionDetector:
    """Waits for the cutout switch to be checked and no longer loading."""

    def __init__(self, policy: PollPolicy = PollPolicy(5.0, 420.0), clock: Clock = SYSTEM_CLOCK):
        self.policy = policy
        self.clock = clock

    async def wait(self, page, progress: Optional[ProgressSink] = None):
        async def done():
            return await page.evaluate(_CUTOUT_DONE_JS)

        def tick(elapsed: float):
            if progress:
                progress(f"Still waiting for background removal... ({int(elapsed)}s elapsed)")

        await poll_until(done, self.policy, "background removal", clock=self.clock, on_wait=tick)


def filename_from_link(attrs: Dict[str, str]) -> Optional[str]:
    """Pick an export filename from a download link's attribute, href or text."""
    name = (attrs.get("download") or "").strip()
    if name:
        return name
    href = attrs.get("href") or ""
    if href:
        last = href.rstrip("/").split("/")[-1].split("?")[0]
        if "." in last:
            return last
    text = (attrs.get("text") or "").strip()
    if "." in text:
        return text
    return None


class RenderDetector:
    """Waits for the rendered export's download link to appear."""

    def __init__(self, policy: PollPolicy = PollPolicy(15.0, 600.0), clock: Clock = SYSTEM_CLOCK,
                 link_selector: str = DOWNLOAD_LINK_SELECTOR):
        self.policy = policy
        self.clock = clock
        self.link_selector = link_selector

    async def wait(self, page, progress: Optional[ProgressSink] = None) -> Dict[str, str]:
        """Returns the link's attributes once it exists."""
        async def link_attrs():
            link = await page.query_selector(self.link_selector)
            if link is None:
                return None
            return await link.evaluate(_LINK_ATTRS_JS) or {"download": "", "href": "", "text": ""}

        def tick(elapsed: float):
            if progress:
                progress(f"⏳ Rendering video... ({int(elapsed)}s elapsed)")

        return await poll_until(
            link_attrs, self.policy, "the download link to appear",
            clock=self.clock, on_wait=tick,
        )


# === Filesystem detectors ===

Fingerprint = Tuple[int, int]


def _fingerprint(path: Path) -> Fingerprint:
    stat = path.stat()
    return stat.st_size, stat.st_mtime_ns


class DownloadDetector(ABC):
    """
    Waits for an exported file to land in the downloads directory.

    A file counts as complete once it is larger than MIN_DOWNLOAD_BYTES and
    its size has not changed for `stable_checks` consecutive polls.
    """

    stable_checks = 1

    def __init__(self, downloads_dir: Path, policy: PollPolicy = PollPolicy(2.0, 900.0),
                 clock: Clock = SYSTEM_CLOCK, snapshot: Optional[Dict[str, Fingerprint]] = None):
        self.downloads_dir = Path(downloads_dir)
        self.policy = policy
        self.clock = clock
        self.snapshot: Dict[str, Fingerprint] = dict(snapshot or {})
        self._sizes: Dict[Path, int] = {}
        self._stable: Dict[Path, int] = {}

    @staticmethod
    def take_snapshot(downloads_dir: Path) -> Dict[str, Fingerprint]:
        """Name -> (size, mtime) of every file currently in `downloads_dir`."""
        downloads_dir = Path(downloads_dir)
        if not downloads_dir.exists():
            return {}
        return {p.name: _fingerprint(p) for p in downloads_dir.iterdir() if p.is_file()}

    def unchanged_since_snapshot(self, path: Path) -> bool:
        before = self.snapshot.get(path.name)
        if before is None:
            return False
        try:
            return _fingerprint(path) == before
        except FileNotFoundError:
            return False

    @abstractmethod
    def is_candidate(self, path: Path) -> bool:
        ...

    @abstractmethod
    def describe(self) -> str:
        ...

    def _check_once(self, progress: Optional[ProgressSink] = None) -> Optional[Path]:
        if not self.downloads_dir.exists():
            return None
        for path in sorted(self.downloads_dir.iterdir()):
            if not path.is_file() or not is_video_file(path) or not self.is_candidate(path):
                continue
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            if size <= MIN_DOWNLOAD_BYTES:
                continue
            if self._sizes.get(path) == size:
                self._stable[path] = self._stable.get(path, 0) + 1
            else:
                self._stable[path] = 0
                if progress:
                    progress(f"📥 Downloading {path.name}... {round(size / 1024 / 1024)}MB")
            self._sizes[path] = size
            if self._stable[path] >= self.stable_checks:
                return path
        return None

    async def wait(self, progress: Optional[ProgressSink] = None) -> Path:
        async def check():
            return self._check_once(progress)

        path = await poll_until(
            check, self.policy, self.describe(), clock=self.clock, error_cls=DownloadNotFound
        )
        logger.info(f"Download complete: {path}")
        return path


class NamedFileDetector(DownloadDetector):
    """Matches files by normalized name with prefix overlap."""

    def __init__(self, expected_name: str, downloads_dir: Path, **kwargs):
        super().__init__(downloads_dir, **kwargs)
        self.expected_name = expected_name

    def is_candidate(self, path: Path) -> bool:
        # a same-named file left by an earlier export only counts once it is rewritten
        return names_match(self.expected_name, path.name) and not self.unchanged_since_snapshot(path)

    def describe(self) -> str:
        return f"a downloaded file matching '{self.expected_name}'"


class DirectoryDiffDetector(DownloadDetector):
    """Accepts any video file that was not present in the snapshot."""

    stable_checks = 3

    def __init__(self, snapshot: Dict[str, Fingerprint], downloads_dir: Path, **kwargs):
        super().__init__(downloads_dir, snapshot=snapshot, **kwargs)

    def is_candidate(self, path: Path) -> bool:
        return path.name not in self.snapshot

    def describe(self) -> str:
        return "a new video file in the downloads folder"
