#!/usr/bin/env python3
"""
Selector Resolution Layer

The editor UI has no stable ids for most controls, so every action is located
through an ordered list of strategies: CSS/XPath selectors first, then DOM
scans by text, then geometry, then keyboard shortcuts. The resolver logs which
strategy won so that selector drift shows up in the logs before it breaks jobs.

Usage:
    resolver = SelectorResolver()
    await resolver.click(page, Action.SPLIT_BUTTON)
    canvas = await resolver.resolve(page, Action.TIMELINE_CANVAS)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError

from core.detectors import SYSTEM_CLOCK, Clock
from core.error_handler import ActionNotLocatable
from core.models import ClipGeometry

logger = logging.getLogger(__name__)


class Action(str, Enum):
    UPLOAD_BUTTON = "upload_button"
    UPLOAD_FILE_BUTTON = "upload_file_button"
    PROJECT_NAME = "project_name"
    TIMELINE_CANVAS = "timeline_canvas"
    TIMELINE_CLIP = "timeline_clip"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    SPLIT_BUTTON = "split_button"
    DELETE_BUTTON = "delete_button"
    CUTOUT_TOOL = "cutout_tool"
    CUTOUT_CARD = "cutout_card"
    CUTOUT_SWITCH = "cutout_switch"
    RESIZE_HANDLE = "resize_handle"
    EXPORT_BUTTON = "export_button"
    DOWNLOAD_BUTTON = "download_button"
    EXPORT_CONFIRM = "export_confirm"
    VIDEO_NAME_INPUT = "video_name_input"


@dataclass
class Resolution:
    """Where an action was found (an element, a point) or that it was already performed."""
    action: Action
    strategy: str
    index: int = 0
    handle: Optional[object] = None
    point: Optional[Tuple[float, float]] = None
    performed: bool = False

    async def click(self, page):
        if self.performed:
            return
        if self.handle is not None:
            await self.handle.click()
        elif self.point is not None:
            await page.mouse.click(*self.point)
        else:
            raise ValueError(f"Resolution for {self.action.value} has nothing to click")


# === Strategies ===

class LocatorStrategy(ABC):
    name = "strategy"

    @abstractmethod
    async def locate(self, page, action: Action, geometry: Optional[ClipGeometry] = None) -> Optional[Resolution]:
        ...

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"


class SelectorStrategy(LocatorStrategy):
    """CSS selector, or XPath with an ``xpath=`` prefix, waited for until visible."""

    def __init__(self, selector: str, timeout: float = 3000):
        self.selector = selector
        self.timeout = timeout
        self.name = f"selector {selector}"

    async def locate(self, page, action, geometry=None):
        handle = await page.wait_for_selector(self.selector, state="visible", timeout=self.timeout)
        if handle is None:
            return None
        return Resolution(action=action, strategy=self.name, handle=handle)


class IndexedButtonStrategy(LocatorStrategy):
    """The n-th (0-based) button inside a container."""

    _JS = """([container, index, buttonSelector]) => {
        const root = document.querySelector(container);
        if (!root) return null;
        return root.querySelectorAll(buttonSelector)[index] || null;
    }"""

    def __init__(self, container: str, index: int, button_selector: str = "button"):
        self.container = container
        self.position = index
        self.button_selector = button_selector
        self.name = f"button #{index} in {container}"

    async def locate(self, page, action, geometry=None):
        handle = await page.evaluate_handle(self._JS, [self.container, self.position, self.button_selector])
        element = handle.as_element()
        if element is None:
            return None
        return Resolution(action=action, strategy=self.name, handle=element)


class TextScanStrategy(LocatorStrategy):
    """
    Scan elements for text containing any keyword group.

    A group matches when every word in it appears (case-insensitive). The
    centre of the first visible match is returned as a click point.
    """

    _JS = """([elementSelector, groups]) => {
        // innermost elements first, so the page root never wins
        for (const el of Array.from(document.querySelectorAll(elementSelector)).reverse()) {
            const text = (el.textContent || '').toLowerCase();
            if (!groups.some(group => group.every(word => text.includes(word)))) continue;
            const rect = el.getBoundingClientRect();
            if (rect.width > 0 && rect.height > 0) {
                return {x: rect.left + rect.width / 2, y: rect.top + rect.height / 2, text: text.trim().slice(0, 80)};
            }
        }
        return null;
    }"""

    def __init__(self, keyword_groups: Sequence[Sequence[str]], element_selector: str = "*"):
        self.keyword_groups = [[word.lower() for word in group] for group in keyword_groups]
        self.element_selector = element_selector
        self.name = "text scan " + " | ".join("+".join(g) for g in self.keyword_groups)

    async def locate(self, page, action, geometry=None):
        found = await page.evaluate(self._JS, [self.element_selector, self.keyword_groups])
        if not found:
            return None
        logger.debug(f"Text scan matched: {found.get('text')!r}")
        return Resolution(action=action, strategy=self.name, point=(found["x"], found["y"]))


class LabelledSwitchStrategy(LocatorStrategy):
    """Find a visible label by text, climb to a known container, return its switch."""

    _JS = """([keywords, containers]) => {
        const labels = Array.from(document.querySelectorAll('span, div, p, label'));
        const label = labels.find(el => {
            const text = (el.innerText || '').toLowerCase();
            return keywords.some(k => text.includes(k)) && el.offsetHeight > 0;
        });
        if (!label) return null;
        const container = label.closest(containers);
        if (!container) return null;
        return container.querySelector('button[role="switch"]');
    }"""

    def __init__(self, keywords: Sequence[str], containers: Sequence[str]):
        self.keywords = [k.lower() for k in keywords]
        self.containers = ", ".join(containers)
        self.name = "labelled switch"

    async def locate(self, page, action, geometry=None):
        handle = await page.evaluate_handle(self._JS, [self.keywords, self.containers])
        element = handle.as_element()
        if element is None:
            return None
        return Resolution(action=action, strategy=self.name, handle=element)


class NearbySwitchStrategy(LocatorStrategy):
    """Any switch whose enclosing div mentions one of the keywords."""

    _JS = """(keywords) => {
        for (const switchBtn of document.querySelectorAll('button[role="switch"]')) {
            const parent = switchBtn.closest('div');
            if (!parent) continue;
            const text = (parent.innerText || '').toLowerCase();
            if (keywords.some(k => text.includes(k))) return switchBtn;
        }
        return null;
    }"""

    def __init__(self, keywords: Sequence[str]):
        self.keywords = [k.lower() for k in keywords]
        self.name = "nearby switch"

    async def locate(self, page, action, geometry=None):
        handle = await page.evaluate_handle(self._JS, self.keywords)
        element = handle.as_element()
        if element is None:
            return None
        return Resolution(action=action, strategy=self.name, handle=element)


class CursorScanStrategy(LocatorStrategy):
    """
    Locate a clip's resize handle by hovering over the track.

    The canvas exposes no DOM for clips, but it switches the cursor to a
    resize cursor over a clip edge. Sweep a grid over the track and, once the
    cursor changes, step right one pixel at a time to the last resize pixel.
    """

    _CURSOR_JS = """(selector) => {
        const el = document.querySelector(selector);
        return el ? getComputedStyle(el).cursor : '';
    }"""

    def __init__(
        self,
        canvas_selector: str = "div.konvajs-content canvas",
        step: int = 5,
        radius: int = 25,
        margin: int = 10,
        probe_limit: int = 50,
        pause: float = 0.01,
        cursors: Tuple[str, ...] = ("col-resize", "ew-resize"),
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.canvas_selector = canvas_selector
        self.step = step
        self.radius = radius
        self.margin = margin
        self.probe_limit = probe_limit
        self.pause = pause
        self.cursors = cursors
        self.clock = clock
        self.name = "cursor scan"

    async def _is_resize(self, page, x: float, y: float) -> bool:
        await page.mouse.move(x, y, steps=1)
        if self.pause:
            await self.clock.sleep(self.pause)
        cursor = await page.evaluate(self._CURSOR_JS, self.canvas_selector) or ""
        return any(c in cursor for c in self.cursors)

    async def locate(self, page, action, geometry=None):
        if geometry is None:
            return None
        center_y = round(geometry.track_center_y)
        start_x = round(geometry.x + self.margin)
        end_x = round(geometry.x + geometry.width - self.margin)
        logger.debug(
            f"Scanning x {start_x}..{end_x}, y {center_y - self.radius}..{center_y + self.radius}"
        )

        for x in range(start_x, end_x, self.step):
            for y in range(center_y - self.radius, center_y + self.radius + 1, self.step):
                if not await self._is_resize(page, x, y):
                    continue
                edge_x = x
                probe_x = x + 1
                while probe_x < end_x and probe_x - x <= self.probe_limit:
                    if not await self._is_resize(page, probe_x, y):
                        break
                    edge_x = probe_x
                    probe_x += 1
                logger.info(f"Resize handle found at X={edge_x}, Y={y}")
                return Resolution(action=action, strategy=self.name, point=(edge_x, y))
        return None


class KeyboardStrategy(LocatorStrategy):
    """Perform the action with a keyboard shortcut."""

    def __init__(self, key: str):
        self.key = key
        self.name = f"keyboard {key}"

    async def locate(self, page, action, geometry=None):
        await page.keyboard.press(self.key)
        return Resolution(action=action, strategy=self.name, performed=True)


# === Concrete UI selectors ===

TIMELINE_TOOLS = "#timeline-part-view > div.timeline-tools-wrapper > div.timeline-tools"
CANVAS_SELECTOR = "div.konvajs-content canvas"

CUTOUT_KEYWORDS = ("auto cutout", "remove background", "cutout")


def default_strategies(clock: Clock = SYSTEM_CLOCK) -> Dict[Action, List[LocatorStrategy]]:
    """Strategies for the current editor UI, in the order they are tried."""
    return {
        Action.UPLOAD_BUTTON: [
            SelectorStrategy('span[data-ssr-i18n-key="uploa_web_d"]', timeout=30000),
        ],
        Action.UPLOAD_FILE_BUTTON: [
            SelectorStrategy('span:text-is("Upload file")'),
            SelectorStrategy('div[class*="upload-item-content"]'),
        ],
        Action.PROJECT_NAME: [
            SelectorStrategy("div.draft-input__read-only"),
            SelectorStrategy('xpath=//*[@id="workbench"]/div[2]/div[1]/div[1]/div[2]/div/div/div/div[3]/div'),
        ],
        Action.TIMELINE_CANVAS: [
            SelectorStrategy(
                "div#timeline > div:nth-child(2) > span > span > div > div.timeline-scroll-wrap > "
                "div.timeline-bd-vertical-scroll-icatUb > div.timeline-large-container > "
                "div[role=presentation] > canvas"
            ),
            SelectorStrategy("div.timeline-large-container > div[role=presentation] > canvas"),
            SelectorStrategy("div.timeline-scroll-wrap canvas"),
            SelectorStrategy(CANVAS_SELECTOR),
            SelectorStrategy("#timeline canvas"),
            SelectorStrategy(
                "xpath=//html[1]/body[1]/div[2]/div[1]/div[1]/div[2]/div[2]/div[1]/div[2]/div[1]/div[1]"
                "/div[1]/div[3]/div[1]/div[2]/span[1]/span[1]/div[1]/div[2]/div[3]/div[2]/div[1]/canvas[1]"
            ),
        ],
        Action.TIMELINE_CLIP: [
            SelectorStrategy('div[data-testid="timeline-clip"]', timeout=10000),
        ],
        Action.ZOOM_IN: [
            IndexedButtonStrategy("#timeline-part-view .timeline-tools-right", 4),
            SelectorStrategy("#timeline-part-view .timeline-tools-right button:nth-child(5)"),
        ],
        Action.ZOOM_OUT: [
            SelectorStrategy(f"{TIMELINE_TOOLS} > div.timeline-tools-right > button:nth-child(4)"),
            IndexedButtonStrategy("#timeline-part-view .timeline-tools-right", 3),
        ],
        Action.SPLIT_BUTTON: [
            SelectorStrategy(f"{TIMELINE_TOOLS} > div.timeline-tools-left > button:nth-child(1)"),
            SelectorStrategy(".timeline-tools-left > button:first-child"),
            SelectorStrategy('.timeline-tools-left button[title*="Split"]'),
            SelectorStrategy('.timeline-tools-left button[aria-label*="Split"]'),
            SelectorStrategy('button[data-testid="split-button"]'),
            SelectorStrategy(".timeline-tools button:first-child"),
            KeyboardStrategy("s"),
        ],
        Action.DELETE_BUTTON: [
            SelectorStrategy(f"{TIMELINE_TOOLS} > div.timeline-tools-left > button:nth-child(2)"),
            SelectorStrategy(".timeline-tools-left > button:nth-child(2)"),
            SelectorStrategy('.timeline-tools-left button[title*="Delete"]'),
            SelectorStrategy('.timeline-tools-left button[aria-label*="Delete"]'),
            SelectorStrategy('button[data-testid="delete-button"]'),
            SelectorStrategy(".timeline-tools button:nth-child(2)"),
            KeyboardStrategy("Delete"),
        ],
        Action.CUTOUT_TOOL: [
            SelectorStrategy("#workbench-tool-bar-toolbarVideoCutout", timeout=10000),
        ],
        Action.CUTOUT_CARD: [
            SelectorStrategy("#cutout-card"),
            SelectorStrategy('[data-testid="cutout-card"]'),
            SelectorStrategy(".cutout-card"),
            SelectorStrategy('div[id*="cutout"]'),
            SelectorStrategy('button[aria-label*="remove"]'),
            SelectorStrategy('button[aria-label*="background"]'),
            SelectorStrategy('div[role="button"][aria-label*="cutout"]'),
            SelectorStrategy(".remove-background-option"),
            SelectorStrategy('[data-id="cutout-card"]'),
            TextScanStrategy([("remove", "background"), ("cutout",), ("remove bg",)]),
        ],
        Action.CUTOUT_SWITCH: [
            LabelledSwitchStrategy(
                CUTOUT_KEYWORDS,
                [".video-tool-item", ".right-panel-item-content-row", ".item-container", ".tool-item", ".panel-item"],
            ),
            SelectorStrategy("#cutout-switch button[role=\"switch\"]"),
            SelectorStrategy("#cutout-switch"),
            SelectorStrategy('[data-testid="cutout-switch"]'),
            SelectorStrategy('[data-testid="auto-cutout-switch"]'),
            SelectorStrategy('button[role="switch"][aria-label*="cutout"]'),
            SelectorStrategy('button[role="switch"][aria-label*="background"]'),
            NearbySwitchStrategy(("cutout", "remove background")),
        ],
        Action.RESIZE_HANDLE: [
            CursorScanStrategy(CANVAS_SELECTOR, clock=clock),
        ],
        Action.EXPORT_BUTTON: [
            SelectorStrategy("#export-video-btn", timeout=5000),
        ],
        Action.DOWNLOAD_BUTTON: [
            SelectorStrategy(".material-export-modal-container .button-x1mG4O", timeout=5000),
        ],
        Action.EXPORT_CONFIRM: [
            SelectorStrategy("#export-confirm-button", timeout=5000),
        ],
        Action.VIDEO_NAME_INPUT: [
            SelectorStrategy("#form-video_name_input", timeout=2000),
        ],
    }


# === Resolver ===

class SelectorResolver:
    """Tries each registered strategy for an action until one locates it."""

    def __init__(
        self,
        strategies: Optional[Dict[Action, List[LocatorStrategy]]] = None,
        progress: Optional[Callable[[str], object]] = None,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.strategies = strategies if strategies is not None else default_strategies(clock)
        self.progress = progress

    def register(self, action: Action, strategy: LocatorStrategy, position: Optional[int] = None):
        chain = self.strategies.setdefault(action, [])
        if position is None:
            chain.append(strategy)
        else:
            chain.insert(position, strategy)

    async def resolve(self, page, action: Action, geometry: Optional[ClipGeometry] = None) -> Resolution:
        chain = self.strategies.get(action, [])
        total = len(chain)
        for index, strategy in enumerate(chain, 1):
            try:
                resolution = await strategy.locate(page, action, geometry)
            except PlaywrightError as e:
                logger.debug(f"{action.value}: strategy {index}/{total} ({strategy.name}) failed: {e}")
                continue
            if resolution is None:
                logger.debug(f"{action.value}: strategy {index}/{total} ({strategy.name}) found nothing")
                continue
            resolution.index = index
            logger.info(f"{action.value} resolved by strategy {index}/{total} ({strategy.name})")
            if index > 1 and self.progress:
                self.progress(f"⚠️ {action.value} found via fallback {index}/{total} ({strategy.name})")
            return resolution
        raise ActionNotLocatable(action.value, total)

    async def click(self, page, action: Action, geometry: Optional[ClipGeometry] = None) -> Resolution:
        resolution = await self.resolve(page, action, geometry)
        await resolution.click(page)
        return resolution
