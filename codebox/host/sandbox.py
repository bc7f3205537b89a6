"""Sandbox: run untrusted Python snippets in a worker process with host callbacks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from codebox.config.schema import SandboxConfig
from codebox.host.handlers import HandlerFunction, HandlerRegistry
from codebox.host.supervisor import WorkerState, WorkerSupervisor
from codebox.rpc.endpoint import Endpoint
from codebox.rpc.protocol import Method
from codebox.rpc.serialization import safe_dict
from codebox.utils.exceptions import CodeboxError, SandboxStartError, SandboxStateError, error_message


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one `execute` call."""

    logs: list[str] = field(default_factory=list)
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"logs": list(self.logs)}
        if self.error is not None:
            out["error"] = self.error
        else:
            out["result"] = self.result
        return out

    @classmethod
    def from_payload(cls, payload: Any) -> ExecutionResult:
        row = safe_dict(payload)
        logs = row.get("logs")
        error = row.get("error")
        return cls(
            logs=[str(x) for x in logs] if isinstance(logs, list) else [],
            result=row.get("result"),
            error=str(error) if error is not None else None,
        )


class Sandbox:
    """
    Host-side facade over one worker process.

    Register handlers, `start()`, then `execute()` snippets; guest code can
    `await` any registered handler by name while it runs. `stop()` is
    idempotent. A stopped sandbox cannot be started again.

        async with Sandbox() as sandbox:
            sandbox_result = await sandbox.execute("return 1 + 2")
    """

    def __init__(self, config: SandboxConfig | None = None):
        self.config = config or SandboxConfig()
        self._handlers = HandlerRegistry(timeout_ms=self.config.handler_deadline_ms())
        self._endpoint = Endpoint("host", default_timeout_ms=self.config.timeout_ms)
        self._endpoint.register_method(Method.CALL_HANDLER, self._handlers.handle_call)
        self._supervisor = WorkerSupervisor(self.config, self._endpoint)

    @property
    def state(self) -> WorkerState:
        return self._supervisor.state

    @property
    def running(self) -> bool:
        return self._supervisor.state is WorkerState.RUNNING and not self._endpoint.closed

    @property
    def pid(self) -> int | None:
        return self._supervisor.pid

    @property
    def handler_names(self) -> list[str]:
        return self._handlers.names()

    def register_handler(self, name: str, fn: HandlerFunction) -> None:
        """Register a function that guest code can call by `name`. Only before `start()`."""
        if self._supervisor.state is not WorkerState.NOT_STARTED:
            raise SandboxStateError("handlers must be registered before start()", self._supervisor.state.value)
        self._handlers.register(name, fn)

    async def start(self) -> None:
        """Spawn the worker and wait until it answers a ping."""
        self._handlers.freeze()
        await self._supervisor.start()
        try:
            await self._endpoint.call(Method.PING, {}, timeout_ms=self.config.start_timeout_ms)
        except CodeboxError as exc:
            tail = self._supervisor.stderr_tail
            await self._supervisor.stop()
            raise SandboxStartError(
                f"sandbox worker did not become ready: {error_message(exc)}",
                {"stderr": tail[-10:]},
            ) from exc
        logger.debug("Sandbox worker pid={} ready with handlers {}", self.pid, self._handlers.names())

    async def execute(
        self,
        code: str,
        context: dict[str, Any] | None = None,
        timeout_ms: float | None = None,
    ) -> ExecutionResult:
        """Run `code` in the worker.

        Guest failures come back in `ExecutionResult.error` as reported by
        the worker; RPC failures (timeout, worker death, protocol errors) are
        folded into the same field with empty logs.
        """
        params = {"code": code, "context": context or {}, "handlers": self._handlers.names()}
        try:
            payload = await self._endpoint.call(Method.EXECUTE_CODE, params, timeout_ms=timeout_ms)
        except CodeboxError as exc:
            logger.debug("execute failed: {}", exc)
            return ExecutionResult(error=error_message(exc))
        return ExecutionResult.from_payload(payload)

    async def stop(self) -> None:
        await self._supervisor.stop()

    async def __aenter__(self) -> Sandbox:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
