#!/usr/bin/env python3
"""
Error taxonomy for ambcast.

Only StoreUnavailable at startup is fatal; everything else is logged and the
system falls back to "no current live stream".
"""

from typing import List, Optional


class AmbcastError(Exception):
    """Base class for all ambcast errors."""


class StoreUnavailable(AmbcastError):
    """The segment directory cannot be created, listed or cleaned."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Segment store {path} unavailable: {reason}")


class LaunchFailed(AmbcastError):
    """The transcoder could not be spawned (missing executable, spawn denied)."""

    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Failed to launch transcoder for {address}: {reason}")


class UnexpectedExit(AmbcastError):
    """The transcoder ended on its own. Logged, never retried automatically."""

    def __init__(self, address: str, returncode: Optional[int], diagnostics: Optional[List[str]] = None):
        self.address = address
        self.returncode = returncode
        self.diagnostics = list(diagnostics or [])
        super().__init__(f"Transcoder for {address} exited unexpectedly with code {returncode}")


class MalformedAnnouncement(AmbcastError):
    """A control message that is not a recognized source address."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Malformed announcement: {message!r}")
