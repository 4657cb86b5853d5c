#!/usr/bin/env python3
"""
Delivery Server for ambcast

FastAPI application serving the viewer pages, the HLS tree written by ffmpeg
(under /hls) and a couple of operator endpoints. It only reads files; the
session is consulted for status reporting.
"""

import os
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from ambcast_core import __version__
from ambcast_core.logging_config import get_logger
from ambcast_core.monitoring import get_process_stats, get_system_stats
from ambcast_core.segment_store import SegmentStore
from ambcast_core.session import Session

logger = get_logger("http")

HLS_PREFIX = "hls"

PAGES = {
    "stream": "index.html",
    "login": "login.html",
    "qr": "QRGenerate.html",
}

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".html": "text/html; charset=utf-8",
    ".js": "application/javascript",
    ".css": "text/css",
    ".png": "image/png",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
}

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def resolve_under(root: str, relative: str) -> Optional[str]:
    """Join `relative` onto `root`, refusing anything that escapes `root`."""
    root = os.path.realpath(root)
    full_path = os.path.realpath(os.path.join(root, relative))
    if full_path != root and not full_path.startswith(root + os.sep):
        return None
    return full_path


def _content_type(path: str) -> str:
    return CONTENT_TYPES.get(os.path.splitext(path)[1].lower(), "application/octet-stream")


def _not_found() -> PlainTextResponse:
    return PlainTextResponse(content="File not found", status_code=404)


def create_app(store: SegmentStore, session: Session, public_dir: str) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        store: Segment store exposed under /hls
        session: Session reported by /status and /health
        public_dir: Directory holding the viewer pages and other static assets

    Returns:
        FastAPI: The configured application
    """
    app = FastAPI(title="ambcast", version=__version__, docs_url=None, redoc_url=None, openapi_url=None)

    def serve_page(name: str):
        path = os.path.join(public_dir, PAGES[name])
        if not os.path.isfile(path):
            logger.warning(f"Page {path} is missing")
            return _not_found()
        return FileResponse(path=path, media_type=CONTENT_TYPES[".html"])

    @app.get("/")
    async def root():
        """Serve the viewer page, as the static root would."""
        return serve_page("stream")

    @app.get("/stream")
    async def stream_page():
        return serve_page("stream")

    @app.get("/login")
    async def login_page():
        return serve_page("login")

    @app.get("/qr")
    async def qr_page():
        return serve_page("qr")

    @app.get("/status")
    async def status():
        """Session state plus the playlist ffmpeg is currently writing."""
        manifest = await store.read_manifest()
        return JSONResponse(
            content={
                "session": session.snapshot(),
                "manifest": manifest.to_dict() if manifest else None,
                "files": store.list_files(),
            },
            headers=NO_CACHE_HEADERS,
        )

    @app.get("/health")
    async def health():
        snapshot = session.snapshot()
        return JSONResponse(
            content={
                "status": "ok",
                "state": snapshot["state"],
                "transcoder": get_process_stats(snapshot["pid"]),
                "system": get_system_stats(store.path() if os.path.isdir(store.path()) else "/"),
            },
            headers=NO_CACHE_HEADERS,
        )

    @app.get(f"/{HLS_PREFIX}/{{file_path:path}}")
    async def serve_hls(file_path: str):
        """Serve the playlist and segments; never cached since the window keeps moving."""
        full_path = resolve_under(store.path(), file_path)
        if full_path is None or not os.path.isfile(full_path):
            return _not_found()
        return FileResponse(
            path=full_path,
            media_type=_content_type(full_path),
            headers={**CORS_HEADERS, **NO_CACHE_HEADERS},
        )

    @app.get("/{file_path:path}")
    async def serve_static(file_path: str):
        """Serve other static assets from the public directory."""
        full_path = resolve_under(public_dir, file_path)
        if full_path is None or not os.path.isfile(full_path):
            return _not_found()
        return FileResponse(path=full_path, media_type=_content_type(full_path), headers=CORS_HEADERS)

    @app.options("/{file_path:path}")
    async def options_handler(file_path: str):
        """Handle OPTIONS requests for CORS preflight."""
        return PlainTextResponse(
            content="",
            headers={**CORS_HEADERS, "Access-Control-Max-Age": "86400"}
        )

    return app
