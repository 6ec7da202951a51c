"""
Browser Automation Module - Playwright

    from browser import SessionManager, SessionConfig, SelectorResolver, Action

Environment Variables Used (via api.config):
    PROFILE_DIR - persistent Chromium profile (keeps the editor login)
    CHROME_PATH - optional Chrome/Chromium executable
    HEADLESS - run without a window
"""

from browser.session_manager import SessionManager, SessionConfig, BrowserSession
from browser.locators import Action, Resolution, SelectorResolver, default_strategies

__all__ = [
    "SessionManager",
    "SessionConfig",
    "BrowserSession",
    "Action",
    "Resolution",
    "SelectorResolver",
    "default_strategies",
]
