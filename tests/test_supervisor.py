"""
Tests for the transcoding process supervisor.

Real subprocesses are used; the interpreter running the tests plays ffmpeg.
"""
import asyncio
import os
import signal
import sys

import pytest

from ambcast_core.errors import LaunchFailed
from ambcast_core.supervisor import TranscodeSupervisor
from tests.conftest import ScriptSupervisor

SLEEPER = "import time; time.sleep(30)"
CRASHER = "import sys; sys.stderr.write('Connection refused\\nrtsp://cam.local/live: I/O error\\n'); sys.exit(3)"


class TestBuildCommand:

    def test_hls_and_codec_options(self, tmp_path):
        supervisor = TranscodeSupervisor(ffmpeg_bin="ffmpeg", input_options="", extra_options="")
        out = str(tmp_path)
        cmd = supervisor.build_command("rtsp://cam.local/live", out)

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "rtsp://cam.local/live"

        def opt(name):
            return cmd[cmd.index(name) + 1]

        assert opt("-c:v") == "copy"
        assert opt("-c:a") == "aac"
        assert opt("-b:a") == "128k"
        assert opt("-ac") == "1"
        assert opt("-ar") == "44100"
        assert opt("-f") == "hls"
        assert opt("-hls_time") == "2"
        assert opt("-hls_list_size") == "3"
        assert opt("-hls_flags") == "delete_segments"
        assert opt("-start_number") == "1"
        assert opt("-hls_segment_filename") == os.path.join(out, "stream%d.ts")
        assert cmd[-1] == os.path.join(out, "stream.m3u8")
        assert "-strftime" not in cmd

    def test_input_and_extra_options_placement(self, tmp_path):
        supervisor = TranscodeSupervisor(input_options="-rtsp_transport tcp", extra_options="-hls_allow_cache 0")
        cmd = supervisor.build_command("rtsp://cam.local/live", str(tmp_path))

        assert cmd.index("-rtsp_transport") < cmd.index("-i")
        assert cmd.index("-hls_allow_cache") > cmd.index("-hls_segment_filename")
        assert cmd[-1].endswith("stream.m3u8")


@pytest.mark.asyncio
async def test_launch_failed_for_missing_executable(tmp_path):
    supervisor = TranscodeSupervisor(ffmpeg_bin=str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(LaunchFailed) as exc_info:
        await supervisor.start("rtsp://cam.local/live", str(tmp_path))
    assert exc_info.value.address == "rtsp://cam.local/live"
    await supervisor.close(timeout=1)


@pytest.mark.asyncio
async def test_start_then_immediate_stop_leaves_no_orphan(tmp_path):
    supervisor = ScriptSupervisor(SLEEPER)
    handle = await supervisor.start("rtsp://cam.local/live", str(tmp_path))
    assert handle.alive
    assert handle.pid is not None

    supervisor.stop(handle)
    assert handle.released
    assert not handle.alive

    returncode = await asyncio.wait_for(handle.wait(), timeout=10)
    if sys.platform != "win32":
        assert returncode == -signal.SIGKILL
    assert handle.process.returncode is not None
    await supervisor.close(timeout=5)


@pytest.mark.asyncio
async def test_stop_is_idempotent(tmp_path):
    supervisor = ScriptSupervisor(SLEEPER)
    handle = await supervisor.start("rtsp://cam.local/live", str(tmp_path))

    supervisor.stop(handle)
    supervisor.stop(handle)
    supervisor.stop(None)

    await asyncio.wait_for(handle.wait(), timeout=10)
    supervisor.stop(handle)
    await supervisor.close(timeout=5)


@pytest.mark.asyncio
async def test_unexpected_exit_is_observed(tmp_path):
    supervisor = ScriptSupervisor(CRASHER)
    handle = await supervisor.start("rtsp://cam.local/live", str(tmp_path))

    returncode = await asyncio.wait_for(handle.wait(), timeout=10)

    assert returncode == 3
    assert handle.exited
    assert not handle.alive
    assert not handle.released
    assert list(handle.diagnostics) == ["Connection refused", "rtsp://cam.local/live: I/O error"]

    # Stopping an exited process is a no-op
    supervisor.stop(handle)
    await supervisor.close(timeout=5)


@pytest.mark.asyncio
async def test_close_waits_for_observers(tmp_path):
    supervisor = ScriptSupervisor(SLEEPER)
    handle = await supervisor.start("rtsp://cam.local/live", str(tmp_path))
    supervisor.stop(handle)

    await supervisor.close(timeout=10)
    assert handle.exited
