#!/usr/bin/env python3
"""
ambcast service wiring

Starts the TCP control listener for the camera and the HTTP server for
viewers, and tears the transcoder down on the way out.
"""

import argparse
import asyncio
import contextlib
import signal
import sys
from typing import List, Optional, Tuple

import uvicorn

from ambcast_core import config
from ambcast_core.control import ControlListener
from ambcast_core.delivery import create_app
from ambcast_core.errors import StoreUnavailable
from ambcast_core.logging_config import configure_logging, get_logger
from ambcast_core.netinfo import get_local_ip, log_startup_banner
from ambcast_core.segment_store import SegmentStore
from ambcast_core.session import Session
from ambcast_core.supervisor import TranscodeSupervisor

logger = get_logger("app")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay a camera's RTSP stream to browsers as HLS")
    parser.add_argument("--host", default=config.BIND_HOST, help="Listen address for both servers")
    parser.add_argument("--control-port", type=int, default=config.CONTROL_PORT,
                        help="TCP port the camera announces its RTSP URL on")
    parser.add_argument("--http-port", type=int, default=config.HTTP_PORT, help="HTTP port for viewers")
    parser.add_argument("--public-dir", default=config.PUBLIC_DIR, help="Directory with the viewer pages")
    parser.add_argument("--hls-dir", default=config.HLS_DIR, help="Directory ffmpeg writes HLS output to")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Run both servers until uvicorn exits. Returns the process exit code."""
    store = SegmentStore(args.hls_dir)
    logger.info(f"Ensuring HLS directory exists: {store.path()}")
    try:
        store.reset()
    except StoreUnavailable as e:
        logger.critical(f"Error managing HLS directory: {e}")
        logger.critical("Please ensure that the HLS path is a folder, not a file, and has correct permissions.")
        return 1

    supervisor = TranscodeSupervisor()
    session = Session(supervisor, store)
    listener = ControlListener(session, host=args.host, port=args.control_port)

    try:
        await listener.start()
    except OSError as e:
        logger.critical(f"Could not start control server on {args.host}:{args.control_port}: {e}")
        return 1

    web_app = create_app(store, session, args.public_dir)
    server = WebServer(uvicorn.Config(
        web_app,
        host=args.host,
        port=args.http_port,
        log_level="warning",
        access_log=False,
    ))
    install_shutdown_handlers(asyncio.get_running_loop(), server)

    web_task = asyncio.create_task(server.serve(), name="http-server")
    log_startup_banner(logger, get_local_ip(), args.http_port, listener.port)

    try:
        await web_task
    except asyncio.CancelledError:
        logger.info("Tasks cancelled - shutting down...")
        raise
    except Exception as e:
        logger.error(f"HTTP server failed: {e}")
        return 1
    finally:
        server.should_exit = True
        await listener.close()
        await session.shutdown(config.SHUTDOWN_TIMEOUT)
        logger.info("ambcast stopped")

    return 0


class WebServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the ambcast event loop."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def install_shutdown_handlers(loop: asyncio.AbstractEventLoop, server: uvicorn.Server,
                              signals: Tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> None:
    """Ask uvicorn to exit on SIGINT/SIGTERM so teardown runs in run()'s finally block."""

    def _request_exit(sig: int) -> None:
        logger.info(f"Received exit signal {signal.Signals(sig).name}, shutting down...")
        server.should_exit = True

    for sig in signals:
        loop.add_signal_handler(sig, _request_exit, sig)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging()

    logger.info("Starting ambcast")
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Received exit signal")
        return 0


if __name__ == "__main__":
    sys.exit(main())
