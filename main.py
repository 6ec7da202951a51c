#!/usr/bin/env python3
"""
Editor Automation - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Process one video without the server
    python main.py run path/to/video.mp4

    # Show, register or recover editors
    python main.py editors
    python main.py editors --add https://www.capcut.com/editor/...
    python main.py editors --recover
"""

import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Settings are read from the environment at import time of api.config
load_dotenv()

logger = logging.getLogger(__name__)


def check_environment() -> bool:
    """Report configuration problems. Returns False when a job cannot run."""
    from api.config import get_config

    problems = get_config().validate()
    if problems:
        print("❌ Configuration problems:")
        for problem in problems:
            print(f"  - {problem}")
        print("\nPlease fix these in your .env file or environment.")
        return False

    print("✅ Configuration OK")
    return True


def run_server(host: str, port: int, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_single_video(video_path: str) -> int:
    """Process one video through the editor and print the result."""
    from api.config import get_config
    from api.main import build_services
    from core.error_handler import PipelineError

    cfg = get_config()
    cfg.ensure_directories()
    services = build_services(cfg)
    try:
        result = await services.driver.run(Path(video_path))
    except PipelineError as e:
        logger.error(f"❌ Automation failed: {e}")
        if e.result is not None:
            print(json.dumps(e.result.to_dict(), indent=2))
        return 1
    finally:
        await services.sessions.dispose()

    logger.info(f"✅ Done: {result.downloaded_path or result.status.value}")
    print(json.dumps(result.to_dict(), indent=2))
    return 0


async def manage_editors(add: list, recover: bool) -> int:
    from api.config import get_config
    from core.editor_registry import EditorRegistry

    registry = EditorRegistry(get_config().EDITORS_FILE)
    for url in add or []:
        await registry.register(url)
        print(f"➕ Registered {url}")
    if recover:
        print(f"♻️ Recovered {await registry.recover()} editor(s)")

    counts = registry.counts()
    print(f"Editors: {counts['available']} available, {counts['in_use']} in-use, {counts['total']} total")
    for editor in registry.all():
        print(f"  [{editor.status.value:>9}] {editor.url}")
    return 0


def main():
    """Main entry point."""
    from api.config import get_config
    from api.logging_config import setup_logging
    setup_logging(log_dir=get_config().LOG_DIR)

    parser = argparse.ArgumentParser(
        description="Editor Automation - background removal through the web video editor"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default=None, help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=None, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Run command
    run_parser = subparsers.add_parser('run', help='Process a single video')
    run_parser.add_argument('video', help='Path to the video file')

    # Editors command
    editors_parser = subparsers.add_parser('editors', help='Show or manage editor URLs')
    editors_parser.add_argument('--add', action='append', metavar='URL', help='Register an editor URL')
    editors_parser.add_argument('--recover', action='store_true', help='Mark every in-use editor available')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'server':
        from api.config import get_config
        cfg = get_config()
        check_environment()
        run_server(args.host or cfg.HOST, args.port or cfg.PORT, args.reload)

    elif args.command == 'run':
        if not check_environment():
            sys.exit(1)
        sys.exit(asyncio.run(run_single_video(args.video)))

    elif args.command == 'editors':
        sys.exit(asyncio.run(manage_editors(args.add, args.recover)))


if __name__ == "__main__":
    main()
