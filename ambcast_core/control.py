#!/usr/bin/env python3
"""
Control Listener for ambcast

TCP server the camera connects to in order to announce its RTSP address.

Protocol (one message per line, replies terminated by CRLF):

    message := ws* address ws*
    address := "rtsp://" <any characters>

A valid address is forwarded to the session and answered with ACK_REPLY,
anything else with NACK_REPLY. Blank lines are ignored. The camera firmware
does not always terminate its message, so a pending partial line is also
flushed after a short idle period and at EOF.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Optional, Set

from ambcast_core import config
from ambcast_core.errors import LaunchFailed, MalformedAnnouncement
from ambcast_core.logging_config import get_logger
from ambcast_core.session import Session

logger = get_logger("control")

SOURCE_PREFIXES = ("rtsp://",)

ACK_REPLY = "ACK: RTSP URL received and transcoding started!\r\n"
NACK_REPLY = "NACK: Invalid data format. Expecting rtsp://...\r\n"
LAUNCH_FAILED_REPLY = "NACK: Transcoder failed to start: {reason}\r\n"

READ_CHUNK = 1024


def parse_announcement(message: str) -> str:
    """
    Validate one control message.

    Args:
        message: Raw message text

    Returns:
        str: The trimmed source address

    Raises:
        MalformedAnnouncement: If the message is not a recognized address
    """
    text = message.strip()
    for prefix in SOURCE_PREFIXES:
        if text.startswith(prefix):
            return text
    raise MalformedAnnouncement(text)


async def read_messages(reader: asyncio.StreamReader,
                        idle_flush: float = config.CONTROL_IDLE_FLUSH,
                        max_line: int = config.CONTROL_MAX_LINE) -> AsyncIterator[bytes]:
    """
    Yield raw messages from a control connection until EOF.

    A message ends at a newline, after `idle_flush` seconds without new data,
    or at EOF. A buffer growing past `max_line` bytes without a newline is
    yielded as is so the caller can reject it.
    """
    buffer = b""
    while True:
        try:
            chunk = await asyncio.wait_for(reader.read(READ_CHUNK), timeout=idle_flush if buffer else None)
        except asyncio.TimeoutError:
            yield buffer
            buffer = b""
            continue

        if not chunk:
            if buffer.strip():
                yield buffer
            return

        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            yield line
        if len(buffer) > max_line:
            yield buffer
            buffer = b""


class ControlListener:
    """Accepts camera connections and forwards valid announcements to the session."""

    def __init__(self, session: Session,
                 host: str = config.BIND_HOST,
                 port: int = config.CONTROL_PORT,
                 idle_flush: float = config.CONTROL_IDLE_FLUSH,
                 max_line: int = config.CONTROL_MAX_LINE,
                 ack_reports_launch_failure: bool = config.ACK_REPORTS_LAUNCH_FAILURE):
        self._session = session
        self._host = host
        self._port = port
        self._idle_flush = idle_flush
        self._max_line = max_line
        self._ack_reports_launch_failure = ack_reports_launch_failure
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.Task] = set()

    @property
    def port(self) -> int:
        """Bound port (useful when listening on port 0)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self._host, self._port)
        logger.info(f"TCP control server listening for the camera on {self._host}:{self.port}")
        logger.info(f"Make sure your firewall allows incoming connections on port {self.port}")

    async def close(self) -> None:
        """Stop accepting connections and drop the open ones."""
        if self._server is None:
            return
        self._server.close()
        for task in list(self._connections):
            task.cancel()
        if self._connections:
            await asyncio.wait(set(self._connections), timeout=config.SHUTDOWN_TIMEOUT)
        await self._server.wait_closed()
        self._server = None
        logger.info("TCP control server closed")

    async def handle_message(self, raw: bytes, client: str = "local") -> Optional[str]:
        """
        Process one message and return the reply to send, or None for blank input.
        """
        if len(raw) > self._max_line:
            logger.warning(f"Dropping oversized message ({len(raw)} bytes) from {client}")
            return NACK_REPLY

        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        logger.info(f"Received data from {client}: \"{text}\"")

        try:
            address = parse_announcement(text)
        except MalformedAnnouncement:
            logger.warning(f"Rejected message from {client}: not an RTSP URL")
            return NACK_REPLY

        logger.info(f"Detected RTSP URL: {address}")
        try:
            await self._session.announce(address)
        except LaunchFailed as e:
            if self._ack_reports_launch_failure:
                return LAUNCH_FAILED_REPLY.format(reason=e.reason)
        return ACK_REPLY

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        client = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        logger.info(f"Camera connected from: {client}")

        task = asyncio.current_task()
        self._connections.add(task)
        try:
            async for raw in read_messages(reader, self._idle_flush, self._max_line):
                reply = await self.handle_message(raw, client)
                if reply is None:
                    continue
                writer.write(reply.encode("utf-8"))
                await writer.drain()
        except ConnectionError as e:
            logger.error(f"Socket error from {client}: {e}")
        except Exception as e:
            # Keep the failure local to this connection
            logger.exception(f"Error handling control connection {client}: {e}")
        finally:
            self._connections.discard(task)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            logger.info(f"Camera disconnected: {client}")
