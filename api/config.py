"""
Unified Configuration Module for the editor automation service.

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, field

from browser.session_manager import SessionConfig
from core.detectors import PollPolicy
from core.workflow import WorkflowConfig


def _path(name: str, default: str) -> Path:
    return Path(os.getenv(name, default))


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])
    CORS_ALLOW_CREDENTIALS: bool = True

    # === File Upload ===
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "2048"))
    ALLOWED_EXTENSIONS: List[str] = field(default_factory=lambda: [".mp4", ".mov", ".avi", ".webm", ".mkv"])

    # === Paths ===
    UPLOADS_DIR: Path = _path("UPLOADS_DIR", "./uploads")
    DOWNLOADS_DIR: Path = _path("DOWNLOADS_DIR", "./downloads")
    DEBUG_DIR: Path = _path("DEBUG_DIR", "./debug")
    PROFILE_DIR: Path = _path("PROFILE_DIR", "./browser_profile")
    EDITORS_FILE: Path = _path("EDITORS_FILE", "./editors.json")
    VIDEOS_FILE: Path = _path("VIDEOS_FILE", "./videos.json")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")

    # === Browser ===
    CHROME_PATH: Optional[str] = os.getenv("CHROME_PATH") or None
    HEADLESS: bool = os.getenv("HEADLESS", "false").lower() == "true"
    VIEWPORT_WIDTH: int = int(os.getenv("VIEWPORT_WIDTH", "1280"))
    VIEWPORT_HEIGHT: int = int(os.getenv("VIEWPORT_HEIGHT", "720"))
    NAVIGATION_TIMEOUT_S: float = float(os.getenv("NAVIGATION_TIMEOUT_S", "60"))

    # === Workflow bounds (seconds) ===
    UPLOAD_LABEL_TIMEOUT_S: float = float(os.getenv("UPLOAD_LABEL_TIMEOUT_S", "600"))
    TRANSCODE_TIMEOUT_S: float = float(os.getenv("TRANSCODE_TIMEOUT_S", "960"))
    CUTOUT_TIMEOUT_S: float = float(os.getenv("CUTOUT_TIMEOUT_S", "420"))
    RENDER_TIMEOUT_S: float = float(os.getenv("RENDER_TIMEOUT_S", "600"))
    DOWNLOAD_TIMEOUT_S: float = float(os.getenv("DOWNLOAD_TIMEOUT_S", "900"))
    RENAME_SETTLE_S: float = float(os.getenv("RENAME_SETTLE_S", "37"))

    # === Trim ===
    TARGET_SECONDS: float = float(os.getenv("TARGET_SECONDS", "30"))
    PIXELS_PER_SECOND: float = float(os.getenv("PIXELS_PER_SECOND", "30"))

    def workflow_config(self) -> WorkflowConfig:
        """Workflow bounds and settle delays from the environment."""
        return WorkflowConfig(
            downloads_dir=self.DOWNLOADS_DIR,
            upload_label_timeout=self.UPLOAD_LABEL_TIMEOUT_S,
            upload_transcode=PollPolicy(1.0, self.TRANSCODE_TIMEOUT_S),
            cutout=PollPolicy(5.0, self.CUTOUT_TIMEOUT_S),
            render=PollPolicy(15.0, self.RENDER_TIMEOUT_S),
            download=PollPolicy(2.0, self.DOWNLOAD_TIMEOUT_S),
            rename_settle=self.RENAME_SETTLE_S,
            target_seconds=self.TARGET_SECONDS,
            pixels_per_second=self.PIXELS_PER_SECOND,
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            profile_dir=self.PROFILE_DIR,
            downloads_dir=self.DOWNLOADS_DIR,
            headless=self.HEADLESS,
            executable_path=self.CHROME_PATH,
            viewport_width=self.VIEWPORT_WIDTH,
            viewport_height=self.VIEWPORT_HEIGHT,
        )

    def ensure_directories(self):
        for directory in (self.UPLOADS_DIR, self.DOWNLOADS_DIR, self.DEBUG_DIR, self.PROFILE_DIR):
            directory.mkdir(parents=True, exist_ok=True)

    def validate(self) -> List[str]:
        """Validate configuration and return list of problems."""
        problems = []
        if not self.EDITORS_FILE.exists():
            problems.append(f"EDITORS_FILE ({self.EDITORS_FILE}) does not exist")
        if self.CHROME_PATH and not Path(self.CHROME_PATH).exists():
            problems.append(f"CHROME_PATH ({self.CHROME_PATH}) does not exist")
        return problems


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config
