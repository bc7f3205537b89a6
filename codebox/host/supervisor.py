"""Spawn and supervise the worker subprocess that runs guest code."""

from __future__ import annotations

import asyncio
import os
from collections import deque
from enum import Enum
from pathlib import Path

from loguru import logger

from codebox.config.schema import SandboxConfig
from codebox.rpc.endpoint import READ_CHUNK_SIZE, Endpoint
from codebox.rpc.framer import LineFramer
from codebox.utils.exceptions import SandboxStartError, SandboxStateError, WorkerTerminatedError

STDERR_TAIL_LINES = 50
EXIT_DRAIN_SECONDS = 1.0


class WorkerState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    TERMINATED = "terminated"


class WorkerSupervisor:
    """
    Owns the worker process and its three standard streams.

    stdout feeds the endpoint, stdin carries the endpoint's writes and
    stderr is forwarded to the log. Whatever ends the process (spawn
    failure, crash, or `stop()`), `_release` runs exactly once: the handle
    becomes terminated, every pending call is rejected with a termination
    error and stdin is closed. A terminated supervisor cannot be restarted.
    """

    def __init__(self, config: SandboxConfig, endpoint: Endpoint):
        self.config = config
        self.endpoint = endpoint
        self._proc: asyncio.subprocess.Process | None = None
        self._state = WorkerState.NOT_STARTED
        self._tasks: list[asyncio.Task[None]] = []
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._released = False
        self._stopping = False
        self._stop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    def _build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.config.env)
        # the worker must import codebox even when it is only on sys.path (e.g. a source checkout)
        package_root = str(Path(__file__).resolve().parents[2])
        parts = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
        if package_root not in parts:
            env["PYTHONPATH"] = os.pathsep.join([package_root, *parts])
        env.setdefault("PYTHONIOENCODING", "utf-8")
        return env

    async def start(self) -> None:
        if self._state is WorkerState.RUNNING:
            raise SandboxStateError("Sandbox already started", self._state.value)
        if self._state is WorkerState.TERMINATED:
            raise SandboxStateError("Sandbox was terminated; create a new one", self._state.value)
        command = self.config.launch_command()
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
            )
        except OSError as exc:
            logger.error("Failed to spawn sandbox worker {}: {}", command[0], exc)
            self._release(WorkerTerminatedError(f"Sandbox failed to start: {exc}"))
            raise SandboxStartError(f"failed to spawn worker: {exc}", {"command": command}) from exc
        assert self._proc.stdin is not None
        self._state = WorkerState.RUNNING
        logger.info("Started sandbox worker pid={}", self._proc.pid)
        self.endpoint.attach(self._proc.stdin)
        self._tasks = [
            asyncio.create_task(self._pump_stdout(), name="codebox-stdout"),
            asyncio.create_task(self._pump_stderr(), name="codebox-stderr"),
            asyncio.create_task(self._watch_exit(), name="codebox-exit"),
        ]

    async def stop(self) -> None:
        """Terminate the worker: close stdin, then SIGTERM, then SIGKILL. Idempotent."""
        if self._proc is None:
            return
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._stop())
        await asyncio.shield(self._stop_task)

    async def _stop(self) -> None:
        proc = self._proc
        assert proc is not None
        self._stopping = True
        self._release(WorkerTerminatedError("Sandbox terminated"))
        grace = self.config.stop_grace_ms / 1000.0
        if proc.returncode is None:
            try:
                await asyncio.wait_for(proc.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("Sandbox worker pid={} ignored stdin close; terminating", proc.pid)
                try:
                    proc.terminate()
                    await asyncio.wait_for(proc.wait(), timeout=grace)
                except ProcessLookupError:
                    pass
                except asyncio.TimeoutError:
                    logger.warning("Sandbox worker pid={} ignored SIGTERM; killing", proc.pid)
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    await proc.wait()
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.endpoint.wait_idle()
        logger.info("Sandbox worker pid={} stopped (exit code {})", proc.pid, proc.returncode)

    def _release(self, reason: WorkerTerminatedError) -> None:
        if self._released:
            return
        self._released = True
        self._state = WorkerState.TERMINATED
        self.endpoint.close(reason)
        proc = self._proc
        if proc is not None and proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

    def _termination_error(self, returncode: int | None) -> WorkerTerminatedError:
        if returncode is None:
            return WorkerTerminatedError("Sandbox terminated: worker closed its output")
        message = f"Sandbox terminated: worker exited with code {returncode}"
        if self._stderr_tail:
            message += f" ({self._stderr_tail[-1][:200]})"
        return WorkerTerminatedError(message)

    async def _pump_stdout(self) -> None:
        proc = self._proc
        assert proc is not None and proc.stdout is not None
        await self.endpoint.run(proc.stdout, close_on_eof=False)
        try:
            returncode: int | None = await asyncio.wait_for(proc.wait(), timeout=EXIT_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            returncode = None
        self._release(self._termination_error(returncode))

    async def _pump_stderr(self) -> None:
        proc = self._proc
        assert proc is not None and proc.stderr is not None
        framer = LineFramer()
        while True:
            chunk = await proc.stderr.read(READ_CHUNK_SIZE)
            lines = framer.feed(chunk) if chunk else framer.flush()
            for text in lines:
                self._stderr_tail.append(text)
                logger.debug("[worker] {}", text)
            if not chunk:
                return

    async def _watch_exit(self) -> None:
        proc = self._proc
        assert proc is not None
        returncode = await proc.wait()
        if self._stopping:
            logger.info("Sandbox worker pid={} exited with code {}", proc.pid, returncode)
        else:
            logger.warning("Sandbox worker pid={} exited unexpectedly with code {}", proc.pid, returncode)
        # let responses written just before exit reach their callers first
        stdout_task = self._tasks[0] if self._tasks else None
        if stdout_task is not None and not stdout_task.done():
            await asyncio.wait({stdout_task}, timeout=EXIT_DRAIN_SECONDS)
        self._release(self._termination_error(returncode))
