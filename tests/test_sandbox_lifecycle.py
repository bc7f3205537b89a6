"""Worker lifecycle: start, crash, stop and misuse."""

import asyncio
import sys

import pytest

from codebox import Sandbox, SandboxConfig
from codebox.host.supervisor import WorkerState
from codebox.utils.exceptions import SandboxStartError, SandboxStateError

pytestmark = pytest.mark.slow


@pytest.mark.asyncio
async def test_start_and_stop():
    sandbox = Sandbox()
    assert sandbox.state is WorkerState.NOT_STARTED
    await sandbox.start()
    assert sandbox.running
    assert isinstance(sandbox.pid, int)

    await sandbox.stop()
    assert sandbox.state is WorkerState.TERMINATED
    assert not sandbox.running


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_concurrent_safe():
    sandbox = Sandbox()
    await sandbox.start()
    await asyncio.gather(sandbox.stop(), sandbox.stop())
    await sandbox.stop()
    assert sandbox.state is WorkerState.TERMINATED


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    sandbox = Sandbox()
    await sandbox.stop()
    assert sandbox.state is WorkerState.NOT_STARTED


@pytest.mark.asyncio
async def test_restart_after_stop_is_rejected():
    sandbox = Sandbox()
    await sandbox.start()
    await sandbox.stop()
    with pytest.raises(SandboxStateError):
        await sandbox.start()


@pytest.mark.asyncio
async def test_register_after_start_is_rejected():
    async with Sandbox() as sandbox:
        with pytest.raises(SandboxStateError):
            sandbox.register_handler("late", lambda: None)


@pytest.mark.asyncio
async def test_execute_after_stop_returns_error():
    sandbox = Sandbox()
    await sandbox.start()
    await sandbox.stop()
    result = await sandbox.execute("return 1")
    assert result.result is None
    assert "terminated" in result.error.lower()


@pytest.mark.asyncio
async def test_execute_before_start_returns_error():
    sandbox = Sandbox()
    result = await sandbox.execute("return 1")
    assert result.error == "Sandbox not started"


@pytest.mark.asyncio
async def test_worker_crash_rejects_pending_calls():
    async with Sandbox() as sandbox:
        sleeper = asyncio.create_task(sandbox.execute("import asyncio\nawait asyncio.sleep(30)"))
        await asyncio.sleep(0.1)
        crash = asyncio.create_task(sandbox.execute("import os\nos._exit(3)"))

        sleeping, crashed = await asyncio.wait_for(asyncio.gather(sleeper, crash), timeout=5)
        for result in (sleeping, crashed):
            assert result.result is None
            assert "terminated" in result.error.lower()
        assert "code 3" in crashed.error
        assert sandbox.state is WorkerState.TERMINATED

        after = await sandbox.execute("return 1")
        assert "terminated" in after.error.lower()


@pytest.mark.asyncio
async def test_spawn_failure_raises_start_error():
    sandbox = Sandbox(SandboxConfig(python_executable="/nonexistent/python3"))
    with pytest.raises(SandboxStartError):
        await sandbox.start()
    assert sandbox.state is WorkerState.TERMINATED
    result = await sandbox.execute("return 1")
    assert "failed to start" in result.error


@pytest.mark.asyncio
async def test_worker_that_never_serves_fails_start():
    config = SandboxConfig(permission_flags=["-c", "import sys; sys.exit(0)"], start_timeout_ms=5000)
    sandbox = Sandbox(config)
    with pytest.raises(SandboxStartError, match="did not become ready"):
        await sandbox.start()
    assert sandbox.state is WorkerState.TERMINATED


@pytest.mark.asyncio
async def test_permission_flags_reach_interpreter():
    async with Sandbox(SandboxConfig(permission_flags=["-X", "utf8"])) as sandbox:
        result = await sandbox.execute("import sys\nreturn sys.flags.utf8_mode")
    assert result.result == 1


@pytest.mark.skipif(sys.platform != "linux", reason="RLIMIT_AS enforcement is Linux-specific")
@pytest.mark.asyncio
async def test_memory_limit_applies():
    async with Sandbox(SandboxConfig(memory_limit_mb=512)) as sandbox:
        result = await sandbox.execute(
            "import resource\nreturn resource.getrlimit(resource.RLIMIT_AS)[0]"
        )
        assert result.result == 512 * 1024 * 1024
        big = await sandbox.execute("data = bytearray(1024 * 1024 * 1024)\nreturn len(data)")
        assert big.error is not None and big.error.startswith("MemoryError")
