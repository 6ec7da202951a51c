"""
Pytest fixtures and configuration for the editor automation test suite.
"""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.catalog import VideoCatalog
from core.editor_registry import EditorRegistry
from tests.fakes import FakeClock, write_editors


# === Fixtures ===

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def editors_file(tmp_path):
    return write_editors(tmp_path / "editors.json", ["available", "available"])


@pytest.fixture
def registry(editors_file):
    return EditorRegistry(editors_file)


@pytest.fixture
def catalog(tmp_path):
    return VideoCatalog(tmp_path / "videos.json", tmp_path / "uploads", tmp_path / "downloads")


@pytest.fixture
def video_file(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir(exist_ok=True)
    path = uploads / "1700000000000.mp4"
    path.write_bytes(b"\x00" * 2048)
    return path


@pytest.fixture
def fake_page():
    """A Playwright page stand-in with async methods."""
    page = MagicMock()
    page.url = "https://www.capcut.com/editor/AAAA-1111"
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value=None)
    page.evaluate_handle = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.screenshot = AsyncMock()
    page.close = AsyncMock()
    page.is_closed = MagicMock(return_value=False)
    page.set_viewport_size = AsyncMock()
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    page.mouse.click = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.keyboard.type = AsyncMock()
    return page


@pytest.fixture
def mock_sessions():
    """Session manager stand-in; close_page deliberately does not release."""
    sessions = MagicMock()
    sessions.session = None
    sessions.acquire = AsyncMock(return_value=MagicMock(session_id="test-session"))
    sessions.close_page = AsyncMock()
    sessions.dispose = AsyncMock()
    return sessions


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "e2e: tests that drive a real browser (slow)")
    config.addinivalue_line("markers", "resilience: failure and recovery behaviour")
