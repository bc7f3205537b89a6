"""Worker-side handling of `executeCode`: run guest code with host callback proxies."""

from __future__ import annotations

import asyncio
import json
import keyword
import os
from types import MappingProxyType
from typing import Any, Callable

from loguru import logger

from codebox.rpc.endpoint import Endpoint
from codebox.rpc.protocol import Method
from codebox.utils.exceptions import InvalidParamsError, error_message
from codebox.worker.guest import INJECTED_NAMES, ConsoleSink, GuestProgram


def describe_guest_error(exc: BaseException) -> str:
    """`<ExceptionType>: <message>` for an exception raised by guest code."""
    name = type(exc).__name__
    message = error_message(exc)
    return name if message == name else f"{name}: {message}"


def _parse_execute_params(params: Any) -> tuple[str, list[str], dict[str, Any]]:
    if not isinstance(params, dict):
        raise InvalidParamsError(Method.EXECUTE_CODE, "params must be an object")
    code = params.get("code")
    if not isinstance(code, str):
        raise InvalidParamsError(Method.EXECUTE_CODE, "params.code must be a string")
    handlers = params.get("handlers") or []
    if not isinstance(handlers, list):
        raise InvalidParamsError(Method.EXECUTE_CODE, "params.handlers must be an array")
    names: list[str] = []
    for name in handlers:
        if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name) or name in INJECTED_NAMES:
            raise InvalidParamsError(Method.EXECUTE_CODE, f"invalid handler name: {name!r}")
        if name not in names:
            names.append(name)
    context = params.get("context") or {}
    if not isinstance(context, dict):
        raise InvalidParamsError(Method.EXECUTE_CODE, "params.context must be an object")
    return code, names, context


class ExecutionBridge:
    """
    Serves `executeCode` and `ping` on the worker's endpoint.

    Every execution gets its own ConsoleSink and its own proxies, so
    concurrent executions never share log state. A proxy suspends only the
    guest task that awaits it; the endpoint keeps reading and can run other
    executions or answer other proxy calls in the meantime.
    """

    def __init__(self, endpoint: Endpoint, *, handler_timeout_ms: float | None = None):
        self.endpoint = endpoint
        self.handler_timeout_ms = handler_timeout_ms
        endpoint.register_method(Method.EXECUTE_CODE, self.execute)
        endpoint.register_method(Method.PING, self.ping)

    def make_proxy(self, name: str) -> Callable[..., Any]:
        """Async callable that forwards `name(*args)` to the host as `callHandler`."""

        async def proxy(*args: Any) -> Any:
            return await self.endpoint.call(
                Method.CALL_HANDLER,
                {"name": name, "args": list(args)},
                timeout_ms=self.handler_timeout_ms,
            )

        proxy.__name__ = proxy.__qualname__ = name
        return proxy

    async def ping(self, _params: Any = None) -> dict[str, Any]:
        return {"pong": True, "pid": os.getpid()}

    async def execute(self, params: Any) -> dict[str, Any]:
        code, names, context = _parse_execute_params(params)
        console = ConsoleSink()
        try:
            program = GuestProgram(code, names)
            proxies = {name: self.make_proxy(name) for name in names}
            result = await program.run(console, MappingProxyType(context), proxies)
        except asyncio.CancelledError:
            raise
        except (Exception, SystemExit) as exc:
            logger.debug("Guest code failed: {}", describe_guest_error(exc))
            return {"logs": console.snapshot(), "error": describe_guest_error(exc)}
        try:
            json.dumps(result)
        except (TypeError, ValueError) as exc:
            return {"logs": console.snapshot(), "error": f"TypeError: result is not JSON serializable: {exc}"}
        return {"logs": console.snapshot(), "result": result}
