#!/usr/bin/env python3
"""
Session Controller for ambcast

Tracks the single announced source address and the transcoder launched for
it. Every announcement runs under one lock: the previous transcoder is killed
before the output directory is cleaned and the next one is started, so two
ffmpeg processes never write into the same playlist.

States:
    IDLE       no address announced (or the last launch failed)
    STREAMING  an address is announced; its transcoder may have exited on
               its own, in which case the handle is cleared and nothing is
               restarted until the next announcement
"""

import asyncio
import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from ambcast_core import config
from ambcast_core.errors import LaunchFailed, StoreUnavailable, UnexpectedExit
from ambcast_core.logging_config import get_logger
from ambcast_core.segment_store import SegmentStore
from ambcast_core.supervisor import ProcessHandle, TranscodeSupervisor

logger = get_logger("session")

EVENT_HISTORY_SIZE = 50


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


class SessionEvent(str, Enum):
    ANNOUNCED = "announced"
    STOPPED = "stopped"
    STARTED = "started"
    LAUNCH_FAILED = "launch_failed"
    EXITED = "exited"
    SHUTDOWN = "shutdown"


class Session:
    """The one live stream session, owned exclusively by this object."""

    def __init__(self, supervisor: TranscodeSupervisor, store: SegmentStore,
                 history_size: int = EVENT_HISTORY_SIZE):
        self._supervisor = supervisor
        self._store = store
        self._lock = asyncio.Lock()
        self._address: Optional[str] = None
        self._handle: Optional[ProcessHandle] = None
        self._watchers: Set[asyncio.Task] = set()
        self._events: Deque[Tuple[float, SessionEvent, str]] = deque(maxlen=history_size)
        self._announcements = 0
        self._last_exit_code: Optional[int] = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        return SessionState.STREAMING if self._address is not None else SessionState.IDLE

    @property
    def current_address(self) -> Optional[str]:
        return self._address

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def events(self) -> List[Tuple[float, SessionEvent, str]]:
        return list(self._events)

    def _record(self, event: SessionEvent, detail: str = "") -> None:
        self._events.append((time.time(), event, detail))
        logger.debug(f"Session event {event.value}: {detail}")

    async def announce(self, address: str) -> ProcessHandle:
        """
        Switch the session to a newly announced source address.

        The running transcoder (if any) is killed strictly before the new one
        is started. Concurrent calls are serialized.

        Args:
            address: Validated source address

        Returns:
            ProcessHandle: Handle of the freshly started transcoder

        Raises:
            LaunchFailed: If the transcoder could not be spawned; the session
                is left IDLE
        """
        async with self._lock:
            if self._closed:
                raise LaunchFailed(address, "session is shutting down")

            self._announcements += 1
            self._record(SessionEvent.ANNOUNCED, address)

            previous = self._handle
            if previous is not None:
                self._supervisor.stop(previous)
                self._handle = None
                self._record(SessionEvent.STOPPED, f"pid {previous.pid} ({previous.address})")

            self._clear_output()

            try:
                handle = await self._supervisor.start(address, self._store.path())
            except LaunchFailed as e:
                self._address = None
                self._record(SessionEvent.LAUNCH_FAILED, e.reason)
                logger.error(f"{e}; session is now idle")
                raise

            if self._closed:
                # shutdown() gave up waiting for the lock while we were spawning
                self._supervisor.stop(handle)
                self._address = None
                self._record(SessionEvent.LAUNCH_FAILED, "session is shutting down")
                raise LaunchFailed(address, "session is shutting down")

            self._address = address
            self._handle = handle
            self._record(SessionEvent.STARTED, f"pid {handle.pid}")

            watcher = asyncio.create_task(self._watch(handle), name=f"session-watch-{handle.pid}")
            self._watchers.add(watcher)
            watcher.add_done_callback(self._watchers.discard)
            return handle

    def _clear_output(self) -> None:
        # Stale segments from the previous source must not be served; a
        # failure here is not fatal once the service is running
        try:
            self._store.reset()
        except StoreUnavailable as e:
            logger.error(f"Could not clean segment store before new session: {e}")

    async def _watch(self, handle: ProcessHandle) -> None:
        returncode = await handle.wait()
        async with self._lock:
            if self._handle is not handle:
                # Replaced or stopped by us
                return
            self._handle = None
            self._last_exit_code = returncode
            self._record(SessionEvent.EXITED, f"pid {handle.pid} code {returncode}")

        error = UnexpectedExit(handle.address, returncode, list(handle.diagnostics))
        logger.error(f"UnexpectedExit: {error}. Waiting for the camera to announce again.")
        if error.diagnostics:
            logger.error("Last FFmpeg log lines:\n" + "\n".join(error.diagnostics))

    async def shutdown(self, timeout: float = config.SHUTDOWN_TIMEOUT) -> None:
        """Kill any live transcoder and wait (bounded) for it to be reaped."""
        self._closed = True
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
            locked = True
        except asyncio.TimeoutError:
            logger.warning("Session busy during shutdown, stopping transcoder anyway")
            locked = False

        try:
            handle = self._handle
            if handle is not None:
                logger.info(f"Shutting down: stopping transcoder (PID: {handle.pid})")
                self._supervisor.stop(handle)
                self._handle = None
            self._record(SessionEvent.SHUTDOWN)
        finally:
            if locked:
                self._lock.release()

        if self._watchers:
            _, pending = await asyncio.wait(set(self._watchers), timeout=timeout)
            for task in pending:
                task.cancel()
        await self._supervisor.close(timeout)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly view of the session for the status endpoint."""
        handle = self._handle
        return {
            "state": self.state.value,
            "address": self._address,
            "pid": handle.pid if handle else None,
            "alive": bool(handle and handle.alive),
            "started_at": handle.started_at if handle else None,
            "last_exit_code": self._last_exit_code,
            "announcements": self._announcements,
            "events": [
                {"time": ts, "event": event.value, "detail": detail}
                for ts, event, detail in self._events
            ],
        }
