"""
Shared pytest fixtures and test doubles.
"""
import asyncio
import itertools
import sys
import time
from collections import deque

import pytest

from ambcast_core.errors import LaunchFailed
from ambcast_core.segment_store import SegmentStore
from ambcast_core.session import Session
from ambcast_core.supervisor import TranscodeSupervisor

_pids = itertools.count(4_000_000)


class FakeHandle:
    """Stand-in for ProcessHandle whose exit is triggered by the test."""

    def __init__(self, address, output_dir):
        self.pid = next(_pids)
        self.address = address
        self.output_dir = output_dir
        self.started_at = time.time()
        self.returncode = None
        self.released = False
        self.diagnostics = deque(maxlen=20)
        self._exited = asyncio.Event()

    @property
    def exited(self):
        return self._exited.is_set()

    @property
    def alive(self):
        return not self.released and not self.exited

    def exit(self, returncode, diagnostics=()):
        self.diagnostics.extend(diagnostics)
        self.returncode = returncode
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


class FakeSupervisor:
    """Records every start/stop in call order."""

    def __init__(self):
        self.calls = []
        self.handles = []
        self.live_at_start = []
        self.fail_reason = None
        self.start_delay = 0
        self.closed = False

    def live_handles(self):
        return [h for h in self.handles if h.alive]

    async def start(self, address, output_dir):
        self.calls.append(("start", address))
        if self.start_delay:
            # Spawning takes a while; other tasks get to run meanwhile
            await asyncio.sleep(self.start_delay)
        self.live_at_start.append(len(self.live_handles()))
        if self.fail_reason:
            raise LaunchFailed(address, self.fail_reason)
        handle = FakeHandle(address, output_dir)
        self.handles.append(handle)
        return handle

    def stop(self, handle):
        if handle is None or handle.released:
            return
        self.calls.append(("stop", handle.address))
        handle.released = True
        if not handle.exited:
            handle.exit(-9)

    async def close(self, timeout=5):
        self.closed = True


class ScriptSupervisor(TranscodeSupervisor):
    """Real supervisor that runs a Python snippet instead of ffmpeg."""

    def __init__(self, script):
        super().__init__()
        self.script = script

    def build_command(self, address, output_dir):
        return [sys.executable, "-c", self.script]


@pytest.fixture
def store(tmp_path):
    return SegmentStore(str(tmp_path / "hls"))


@pytest.fixture
def supervisor():
    return FakeSupervisor()


@pytest.fixture
def session(supervisor, store):
    return Session(supervisor, store)
