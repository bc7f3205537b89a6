"""Host-side registry of functions guest code may call back into."""

from __future__ import annotations

import asyncio
import inspect
import keyword
from typing import Any, Awaitable, Callable

from loguru import logger

from codebox.rpc.serialization import safe_dict
from codebox.utils.exceptions import HandlerNotFoundError, InvalidParamsError, RpcTimeoutError, ValidationError
from codebox.worker.guest import INJECTED_NAMES

HandlerFunction = Callable[..., Awaitable[Any] | Any]


def validate_handler_name(name: Any) -> str:
    """Check that `name` can be bound as a parameter of the guest program."""
    if not isinstance(name, str) or not name.isidentifier():
        raise ValidationError(f"handler name must be a Python identifier, got {name!r}", field="name")
    if keyword.iskeyword(name):
        raise ValidationError(f"handler name cannot be a keyword: {name}", field="name")
    if name in INJECTED_NAMES or name.startswith("__"):
        raise ValidationError(f"handler name is reserved: {name}", field="name")
    return name


class HandlerRegistry:
    """Exact-match mapping from handler name to callable.

    Mutable only until `freeze()`; the sandbox freezes it when the worker
    starts, so lookups during execution never race with registration.
    """

    def __init__(self, timeout_ms: float | None = None) -> None:
        self.timeout_ms = timeout_ms
        self._handlers: dict[str, HandlerFunction] = {}
        self._frozen = False

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return list(self._handlers)

    def register(self, name: str, fn: HandlerFunction) -> None:
        if self._frozen:
            raise ValidationError("handlers cannot be registered after the sandbox has started", field="name")
        validate_handler_name(name)
        if not callable(fn):
            raise ValidationError(f"handler {name} is not callable", field="fn")
        if name in self._handlers:
            raise ValidationError(f"handler already registered: {name}", field="name")
        self._handlers[name] = fn

    def freeze(self) -> None:
        self._frozen = True

    def get(self, name: str) -> HandlerFunction:
        try:
            return self._handlers[name]
        except (KeyError, TypeError):
            raise HandlerNotFoundError(str(name)) from None

    async def invoke(self, name: str, args: list[Any]) -> Any:
        """Run a handler with positional args, awaiting it when it is async.

        An async handler still running after `timeout_ms` is cancelled and
        the call fails with RpcTimeoutError.
        """
        fn = self.get(name)
        outcome = fn(*args)
        if not inspect.isawaitable(outcome):
            return outcome
        if self.timeout_ms is None:
            return await outcome
        try:
            return await asyncio.wait_for(outcome, self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.warning("Handler {} did not finish within {}ms; cancelled", name, self.timeout_ms)
            raise RpcTimeoutError(name, self.timeout_ms) from None

    async def handle_call(self, params: Any) -> Any:
        """Serve a `callHandler` request: `{name, args}` -> handler result."""
        row = safe_dict(params)
        name = row.get("name")
        if not isinstance(name, str):
            raise InvalidParamsError("callHandler", "params.name must be a string")
        args = row.get("args", [])
        if args is None:
            args = []
        if not isinstance(args, list):
            raise InvalidParamsError("callHandler", "params.args must be an array")
        logger.debug("Guest called handler {} with {} arg(s)", name, len(args))
        return await self.invoke(name, args)
