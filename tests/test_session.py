"""
Tests for the session controller state machine.
"""
import asyncio
import logging
import os
import shutil

import pytest

from ambcast_core.errors import LaunchFailed
from ambcast_core.session import Session, SessionEvent, SessionState
from tests.conftest import ScriptSupervisor

CAM_X = "rtsp://cam.local/live"
CAM_Y = "rtsp://10.0.0.7:554/live"


async def _settle():
    # Let watcher tasks run
    for _ in range(5):
        await asyncio.sleep(0)


def test_initial_state_is_idle(session):
    assert session.state is SessionState.IDLE
    assert session.current_address is None
    assert session.handle is None
    snapshot = session.snapshot()
    assert snapshot["state"] == "idle"
    assert snapshot["pid"] is None
    assert snapshot["announcements"] == 0


@pytest.mark.asyncio
async def test_announce_from_idle(session, supervisor, store):
    handle = await session.announce(CAM_X)

    assert session.state is SessionState.STREAMING
    assert session.current_address == CAM_X
    assert session.handle is handle
    assert supervisor.calls == [("start", CAM_X)]
    assert handle.output_dir == store.path()
    assert os.path.isdir(store.path())


@pytest.mark.asyncio
async def test_new_announcement_stops_before_start(session, supervisor):
    first = await session.announce(CAM_X)
    second = await session.announce(CAM_Y)

    assert supervisor.calls == [("start", CAM_X), ("stop", CAM_X), ("start", CAM_Y)]
    assert first.released
    assert session.handle is second
    assert session.current_address == CAM_Y
    assert session.state is SessionState.STREAMING


@pytest.mark.asyncio
async def test_new_announcement_clears_previous_output(session, store):
    await session.announce(CAM_X)
    with open(os.path.join(store.path(), "stream1.ts"), "wb") as f:
        f.write(b"old media")

    await session.announce(CAM_Y)
    assert store.list_files() == []


@pytest.mark.asyncio
async def test_unusable_store_mid_run_is_not_fatal(session, supervisor, store, caplog):
    caplog.set_level(logging.INFO, logger="ambcast")
    await session.announce(CAM_X)

    shutil.rmtree(store.path())
    with open(store.path(), "w", encoding="utf-8") as f:
        f.write("a file where the directory should be")

    handle = await session.announce(CAM_Y)

    assert supervisor.calls == [("start", CAM_X), ("stop", CAM_X), ("start", CAM_Y)]
    assert session.state is SessionState.STREAMING
    assert session.current_address == CAM_Y
    assert session.handle is handle
    assert "Could not clean segment store" in caplog.text


@pytest.mark.asyncio
async def test_never_more_than_one_live_handle(session, supervisor):
    supervisor.start_delay = 0.01
    addresses = [f"rtsp://cam.local/live{i}" for i in range(10)]
    await asyncio.gather(*(session.announce(address) for address in addresses))

    assert supervisor.live_at_start == [0] * len(addresses)
    assert len(supervisor.live_handles()) == 1

    # Calls strictly alternate start / stop / start ...
    kinds = [kind for kind, _ in supervisor.calls]
    assert kinds == ["start"] + ["stop", "start"] * (len(addresses) - 1)
    assert session.handle is supervisor.live_handles()[0]


@pytest.mark.asyncio
async def test_launch_failure_reverts_to_idle(session, supervisor):
    await session.announce(CAM_X)
    supervisor.fail_reason = "No such file or directory: 'ffmpeg'"

    with pytest.raises(LaunchFailed):
        await session.announce(CAM_Y)

    assert session.state is SessionState.IDLE
    assert session.current_address is None
    assert session.handle is None
    assert supervisor.live_handles() == []
    events = [event for _, event, _ in session.events]
    assert events[-1] is SessionEvent.LAUNCH_FAILED


@pytest.mark.asyncio
async def test_unexpected_exit_clears_handle_without_restart(session, supervisor, caplog):
    caplog.set_level(logging.INFO, logger="ambcast")
    handle = await session.announce(CAM_X)

    handle.exit(1, diagnostics=["rtsp://cam.local/live: Connection refused"])
    await _settle()

    assert session.handle is None
    assert session.state is SessionState.STREAMING
    assert session.current_address == CAM_X
    assert session.snapshot()["last_exit_code"] == 1
    assert supervisor.calls == [("start", CAM_X)]
    assert "UnexpectedExit" in caplog.text
    assert "Connection refused" in caplog.text


@pytest.mark.asyncio
async def test_announce_after_unexpected_exit_starts_fresh(session, supervisor):
    handle = await session.announce(CAM_X)
    handle.exit(1)
    await _settle()

    await session.announce(CAM_X)

    # Nothing left to stop, so no stop call in between
    assert supervisor.calls == [("start", CAM_X), ("start", CAM_X)]
    assert session.handle is not None and session.handle.alive


@pytest.mark.asyncio
async def test_stopped_handle_exit_is_not_unexpected(session, supervisor, caplog):
    caplog.set_level(logging.INFO, logger="ambcast")
    await session.announce(CAM_X)
    await session.announce(CAM_Y)
    await _settle()

    assert "UnexpectedExit" not in caplog.text
    assert session.snapshot()["last_exit_code"] is None


@pytest.mark.asyncio
async def test_shutdown_stops_live_handle(session, supervisor):
    handle = await session.announce(CAM_X)

    await session.shutdown(timeout=1)

    assert handle.released
    assert session.handle is None
    assert supervisor.closed
    with pytest.raises(LaunchFailed):
        await session.announce(CAM_Y)
    assert supervisor.calls == [("start", CAM_X), ("stop", CAM_X)]


@pytest.mark.asyncio
async def test_shutdown_during_slow_start_leaves_nothing_running(session, supervisor):
    supervisor.start_delay = 0.3
    pending = asyncio.create_task(session.announce(CAM_X))
    await asyncio.sleep(0.05)

    await session.shutdown(timeout=0.1)
    with pytest.raises(LaunchFailed):
        await pending

    assert supervisor.live_handles() == []
    assert session.handle is None
    assert session.state is SessionState.IDLE
    assert supervisor.calls == [("start", CAM_X), ("stop", CAM_X)]


@pytest.mark.asyncio
async def test_shutdown_when_idle(session, supervisor):
    await session.shutdown(timeout=1)
    assert supervisor.calls == []
    assert supervisor.closed


@pytest.mark.asyncio
async def test_snapshot_while_streaming(session):
    handle = await session.announce(CAM_X)
    snapshot = session.snapshot()

    assert snapshot["state"] == "streaming"
    assert snapshot["address"] == CAM_X
    assert snapshot["pid"] == handle.pid
    assert snapshot["alive"] is True
    assert snapshot["announcements"] == 1
    assert [e["event"] for e in snapshot["events"]] == ["announced", "started"]


@pytest.mark.asyncio
async def test_real_processes_are_replaced(store):
    supervisor = ScriptSupervisor("import time; time.sleep(30)")
    session = Session(supervisor, store)

    first = await session.announce(CAM_X)
    second = await session.announce(CAM_Y)

    assert first.released
    await asyncio.wait_for(first.wait(), timeout=10)
    assert second.alive

    await session.shutdown(timeout=10)
    assert second.exited
