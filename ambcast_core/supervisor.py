#!/usr/bin/env python3
"""
Transcoding Process Supervisor for ambcast

Owns the ffmpeg subprocess that turns the camera's RTSP stream into a rolling
HLS playlist: video is copied, audio is re-encoded to mono AAC. Launching is
fire-and-forget; a background observer per process drains stderr into the log
and records the exit status.
"""

import asyncio
import os
import shlex
import time
from collections import deque
from typing import Deque, List, Optional, Set

from ambcast_core import config
from ambcast_core.errors import LaunchFailed
from ambcast_core.logging_config import get_logger
from ambcast_core.segment_store import MANIFEST_NAME, SEGMENT_PATTERN

logger = get_logger("ffmpeg")

# Number of stderr lines kept per process for post-mortem logging
DIAGNOSTIC_LINES = 20


class ProcessHandle:
    """Ownership of one transcoding subprocess."""

    def __init__(self, address: str, output_dir: str, process: asyncio.subprocess.Process):
        self.address = address
        self.output_dir = output_dir
        self.process = process
        self.started_at = time.time()
        self.returncode: Optional[int] = None
        self.released = False
        self.diagnostics: Deque[str] = deque(maxlen=DIAGNOSTIC_LINES)
        self._exited = asyncio.Event()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def alive(self) -> bool:
        """True until the handle is released by stop() or the process exits."""
        return not self.released and not self.exited

    def mark_exited(self, returncode: Optional[int]) -> None:
        self.returncode = returncode
        self._exited.set()

    async def wait(self) -> Optional[int]:
        """Wait for the process to exit and return its exit code."""
        await self._exited.wait()
        return self.returncode

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} address={self.address!r} alive={self.alive}>"


class TranscodeSupervisor:
    """Starts and kills ffmpeg processes. Holds no session state of its own."""

    def __init__(self,
                 ffmpeg_bin: str = config.FFMPEG_BIN,
                 segment_time: int = config.HLS_SEGMENT_TIME,
                 list_size: int = config.HLS_LIST_SIZE,
                 start_number: int = config.HLS_START_NUMBER,
                 loglevel: str = config.FFMPEG_LOGLEVEL,
                 input_options: str = config.FFMPEG_INPUT_OPTIONS,
                 extra_options: str = config.FFMPEG_EXTRA_OPTIONS):
        self.ffmpeg_bin = ffmpeg_bin
        self.segment_time = segment_time
        self.list_size = list_size
        self.start_number = start_number
        self.loglevel = loglevel
        self.input_options = shlex.split(input_options) if input_options else []
        self.extra_options = shlex.split(extra_options) if extra_options else []
        self._observers: Set[asyncio.Task] = set()

    def build_command(self, address: str, output_dir: str) -> List[str]:
        """
        Build the ffmpeg command line for one session.

        Args:
            address: RTSP address announced by the camera
            output_dir: Directory receiving the playlist and segments

        Returns:
            list: The ffmpeg command as a list of arguments
        """
        cmd = [
            self.ffmpeg_bin,
            "-hide_banner",
            "-nostats",
            "-loglevel", self.loglevel,
            "-y",
        ]
        cmd.extend(self.input_options)
        cmd.extend([
            "-i", address,

            # Pass video through, re-encode audio to mono AAC
            "-c:v", "copy",
            "-c:a", config.AUDIO_CODEC,
            "-b:a", config.AUDIO_BITRATE,
            "-ac", str(config.AUDIO_CHANNELS),
            "-ar", str(config.AUDIO_SAMPLE_RATE),

            # Rolling HLS window, old segments deleted as it advances
            "-f", "hls",
            "-hls_time", str(self.segment_time),
            "-hls_list_size", str(self.list_size),
            "-hls_flags", "delete_segments",
            "-start_number", str(self.start_number),
            "-hls_segment_filename", os.path.join(output_dir, SEGMENT_PATTERN),
        ])
        cmd.extend(self.extra_options)
        cmd.append(os.path.join(output_dir, MANIFEST_NAME))
        return cmd

    async def start(self, address: str, output_dir: str) -> ProcessHandle:
        """
        Launch a transcoder and return without waiting for it to become ready.

        Raises:
            LaunchFailed: If the process could not be spawned at all
        """
        cmd = self.build_command(address, output_dir)
        logger.info(f"Attempting to start transcoding from: {address}")
        logger.info(f"Outputting HLS to: {output_dir}")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start ffmpeg process: {e}. Is ffmpeg installed and in your PATH?")
            raise LaunchFailed(address, str(e)) from e

        handle = ProcessHandle(address, output_dir, process)
        logger.info(f"FFmpeg process started (PID: {handle.pid})")

        observer = asyncio.create_task(self._observe(handle), name=f"ffmpeg-observer-{handle.pid}")
        self._observers.add(observer)
        observer.add_done_callback(self._observers.discard)
        return handle

    def stop(self, handle: Optional[ProcessHandle]) -> None:
        """
        Kill the transcoder immediately (SIGKILL) and release the handle.

        Does not wait for the process to exit; the observer task reaps it.
        Stopping a missing, released or already exited handle is a no-op.
        """
        if handle is None or handle.released:
            return
        handle.released = True

        if handle.exited or handle.process.returncode is not None:
            logger.debug(f"FFmpeg process {handle.pid} already exited, nothing to stop")
            return

        logger.info(f"Stopping existing ffmpeg process (PID: {handle.pid})...")
        try:
            handle.process.kill()
        except ProcessLookupError:
            logger.debug(f"FFmpeg process {handle.pid} vanished before it could be killed")

    async def _observe(self, handle: ProcessHandle) -> None:
        """Log stderr until EOF, then record the exit status on the handle."""
        stream = handle.process.stderr
        if stream is not None:
            while True:
                try:
                    line = await stream.readline()
                except ValueError:
                    # Line longer than the reader limit; the rest of it was dropped
                    continue
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    handle.diagnostics.append(text)
                    logger.debug(f"[FFmpeg stderr]: {text}")

        returncode = await handle.process.wait()
        handle.mark_exited(returncode)

        if handle.released:
            logger.info(f"FFmpeg process {handle.pid} stopped (exit code {returncode})")
        else:
            logger.warning(f"FFmpeg process {handle.pid} for {handle.address} exited with code {returncode}")

    async def close(self, timeout: float = config.SHUTDOWN_TIMEOUT) -> None:
        """Wait up to `timeout` seconds for observers to reap their processes."""
        if not self._observers:
            return
        _, pending = await asyncio.wait(set(self._observers), timeout=timeout)
        for task in pending:
            logger.warning(f"Observer {task.get_name()} still running at shutdown, cancelling")
            task.cancel()
