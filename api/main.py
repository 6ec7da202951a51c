"""
Editor Automation API - FastAPI Backend
Accepts video uploads, runs them through the editor workflow and reports
progress and catalog status.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, UploadFile, File, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from api.config import AppConfig, get_config
from api.logging_config import setup_logging
from browser.locators import SelectorResolver
from browser.session_manager import SessionManager
from core.catalog import VideoCatalog
from core.editor_registry import EditorRegistry
from core.error_handler import NoResourceAvailable, PipelineError
from core.job_driver import JobDriver
from core.models import VideoStatus
from core.progress import ProgressBroadcaster
from core.screenshot_manager import ScreenshotConfig, ScreenshotManager

logger = setup_logging(log_dir=get_config().LOG_DIR)

VERSION = "1.0.0"


@dataclass
class Services:
    """Everything the routes need, built once per app."""
    config: AppConfig
    registry: EditorRegistry
    catalog: VideoCatalog
    progress: ProgressBroadcaster
    sessions: SessionManager
    driver: JobDriver


def build_services(cfg: AppConfig) -> Services:
    registry = EditorRegistry(cfg.EDITORS_FILE)
    catalog = VideoCatalog(cfg.VIDEOS_FILE, cfg.UPLOADS_DIR, cfg.DOWNLOADS_DIR)
    progress = ProgressBroadcaster()
    sessions = SessionManager(cfg.session_config(), registry)
    driver = JobDriver(
        registry,
        sessions,
        catalog,
        progress=progress,
        screenshots=ScreenshotManager(ScreenshotConfig(base_dir=cfg.DEBUG_DIR)),
        workflow_config=cfg.workflow_config(),
        resolver=SelectorResolver(progress=progress),
        navigation_timeout=cfg.NAVIGATION_TIMEOUT_S,
    )
    return Services(cfg, registry, catalog, progress, sessions, driver)


# === Pydantic Models ===

class StatusUpdateRequest(BaseModel):
    status: VideoStatus


# === App factory ===

def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services(get_config())
    cfg = services.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management."""
        # Startup
        logger.info("Starting Editor Automation API...")
        cfg.ensure_directories()
        for problem in cfg.validate():
            logger.warning(f"Config: {problem}")
        recovered = await services.registry.recover()
        if recovered:
            logger.info(f"{recovered} editor(s) returned to available")
        yield
        # Shutdown
        logger.info("Shutting down Editor Automation API...")
        await services.sessions.dispose()
        logger.info("Browser session closed")

    app = FastAPI(
        title="Editor Automation API",
        description="Automated background removal through the web video editor",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if cfg.DEBUG else None,
        redoc_url="/redoc" if cfg.DEBUG else None,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type"],
    )

    # === Request Logging Middleware ===

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests."""
        start_time = datetime.now()
        response = await call_next(request)
        duration = (datetime.now() - start_time).total_seconds() * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration:.2f}ms)")
        return response

    # === Health ===

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "browser_running": services.sessions.session is not None,
            "editors": services.registry.counts(),
            "version": VERSION,
        }

    # === Upload & automation ===

    @app.post("/upload")
    async def upload_video(video: Optional[UploadFile] = File(None)):
        """Save an uploaded video and run it through the editor."""
        counts = services.registry.counts()
        if counts["available"] == 0:
            return _locked(counts)

        if video is None or not video.filename:
            return JSONResponse(status_code=400, content={"success": False, "message": "No file uploaded."})

        ext = Path(video.filename).suffix.lower()
        if ext not in cfg.ALLOWED_EXTENSIONS:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": f"Invalid file type. Allowed: {cfg.ALLOWED_EXTENSIONS}"},
            )

        content = await video.read()
        if len(content) > cfg.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": f"File too large. Max: {cfg.MAX_UPLOAD_SIZE_MB}MB"},
            )

        cfg.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
        file_path = cfg.UPLOADS_DIR / f"{int(time.time() * 1000)}{ext}"
        file_path.write_bytes(content)
        logger.info(f"Video uploaded: {video.filename} -> {file_path} ({len(content) // 1024}KB)")
        services.catalog.set_status(file_path.name, VideoStatus.QUEUED)

        try:
            result = await services.driver.run(file_path)
        except NoResourceAvailable:
            # lost the race for the last editor after the availability check
            file_path.unlink(missing_ok=True)
            services.catalog.clear_status(file_path.name, VideoStatus.QUEUED)
            return _locked(services.registry.counts())
        except PipelineError as e:
            content = {"success": False, "message": str(e)}
            if e.result is not None:
                content["result"] = e.result.to_dict()
            return JSONResponse(status_code=500, content=content)

        return {
            "success": True,
            "message": "Video uploaded and processed successfully.",
            "filePath": str(file_path),
            "result": result.to_dict(),
        }

    @app.get("/progress")
    async def progress_stream():
        """Server-Sent Events stream of pipeline progress."""
        return StreamingResponse(
            services.progress.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/api/progress")
    async def progress_history(limit: int = 50):
        return {"events": [e.to_dict() for e in services.progress.recent(limit)]}

    # === Catalog ===

    @app.get("/videos.json")
    async def videos_json():
        return {"videos": services.catalog.list_videos()}

    @app.get("/api/videos")
    async def list_videos():
        videos = services.catalog.list_videos()
        return {"success": True, "count": len(videos), "videos": videos}

    @app.put("/api/videos/{name}/status")
    async def update_video_status(name: str, request: StatusUpdateRequest):
        if not name.strip():
            raise HTTPException(status_code=400, detail="Video name required")
        services.catalog.set_status(name, request.status)
        return {"success": True, "name": name, "status": request.status.value}

    # === Editors ===

    @app.get("/editors")
    async def editors():
        return {
            **services.registry.counts(),
            "editors": [e.to_dict() for e in services.registry.all()],
        }

    return app


def _locked(counts: dict) -> JSONResponse:
    return JSONResponse(
        status_code=423,
        content={
            "success": False,
            "message": (
                "No editors available for automation. "
                f"All {counts['total']} editors are currently in-use. Please try again later."
            ),
            "editorStatus": counts,
        },
    )


app = create_app()
