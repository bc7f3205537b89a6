"""Duplex JSON-RPC endpoint: one side of the host/worker pipe."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from codebox.rpc.correlator import Correlator
from codebox.rpc.framer import LineFramer
from codebox.rpc.protocol import ErrorCode, Message, RpcRequest, RpcResponse
from codebox.rpc.serialization import InvalidRequest, decode_message, encode_message, make_error_response
from codebox.utils.exceptions import (
    EndpointClosedError,
    HandlerNotFoundError,
    InvalidParamsError,
    RpcCallError,
    WorkerTerminatedError,
    classify_exception,
    error_message,
    sanitize_error_message,
)

MethodHandler = Callable[[Any], Awaitable[Any] | Any]

READ_CHUNK_SIZE = 65536


def rpc_code_for(exc: Exception) -> int:
    """Pick the JSON-RPC error code used when answering a failed request."""
    if isinstance(exc, InvalidParamsError):
        return ErrorCode.INVALID_PARAMS
    if isinstance(exc, HandlerNotFoundError):
        return ErrorCode.METHOD_NOT_FOUND
    return ErrorCode.INTERNAL_ERROR


class LineWriter(Protocol):
    """The subset of `asyncio.StreamWriter` the endpoint writes through."""

    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...


class Endpoint:
    """
    One participant of a bidirectional JSON-RPC channel.

    Each side of the pipe runs one Endpoint and can be caller and callee at
    the same time. Incoming responses settle pending calls synchronously on
    the event loop; incoming requests each run in their own task, so a
    handler that itself awaits a nested `call()` never blocks the read loop.
    """

    def __init__(self, name: str, *, default_timeout_ms: float | None = None):
        self.name = name
        self.default_timeout_ms = default_timeout_ms
        self._framer = LineFramer()
        self._correlator = Correlator()
        self._methods: dict[str, MethodHandler] = {}
        self._writer: LineWriter | None = None
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._next_id = 0
        self._closed = False
        self._close_reason: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    def register_method(self, method: str, handler: MethodHandler) -> None:
        """Serve `method` with `handler(params)`; sync or async handlers both work."""
        if not callable(handler):
            raise TypeError(f"handler for {method!r} is not callable")
        self._methods[method] = handler

    def attach(self, writer: LineWriter) -> None:
        """Set the outgoing half of the channel."""
        self._writer = writer

    async def call(self, method: str, params: Any = None, timeout_ms: float | None = None) -> Any:
        """Send a request and wait for its response.

        Raises RpcCallError for an error Response, RpcTimeoutError when the
        deadline fires first, and WorkerTerminatedError (or its subclass
        EndpointClosedError, before anything is written) when the channel
        is or becomes unusable.
        """
        if self._closed:
            raise EndpointClosedError(self._closed_message())
        self._next_id += 1
        req_id = self._next_id
        timeout = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        future = self._correlator.register(req_id, method, timeout)
        try:
            await self._send(RpcRequest(id=req_id, method=method, params=params))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            # a failed write may already have closed the endpoint and rejected everything
            if req_id in self._correlator:
                self._correlator.reject(req_id, exc)
        return await future

    def feed(self, chunk: bytes) -> None:
        """Consume a raw chunk from the incoming stream."""
        for line in self._framer.feed(chunk):
            self.handle_line(line)

    def feed_eof(self) -> None:
        for line in self._framer.flush():
            self.handle_line(line)

    def handle_line(self, line: str) -> None:
        """Route one complete line: responses settle calls, requests are dispatched."""
        try:
            message = decode_message(line)
        except InvalidRequest as exc:
            logger.warning("[{}] Invalid request {!r}: {}", self.name, exc.req_id, exc.reason)
            self._spawn(self._respond(make_error_response(exc.req_id, ErrorCode.INVALID_REQUEST, exc.reason)))
            return
        if message is None:
            logger.warning("[{}] Dropping malformed line: {}", self.name, line[:200])
            return
        if isinstance(message, RpcResponse):
            self._on_response(message)
        else:
            self._spawn(self._dispatch(message))

    async def run(self, reader: asyncio.StreamReader, *, close_on_eof: bool = True) -> None:
        """Read the incoming stream until EOF.

        With `close_on_eof` the endpoint is closed afterwards; otherwise the
        owner decides when (and with which termination error) to close it.
        """
        reason: BaseException = WorkerTerminatedError("Sandbox terminated: channel closed")
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    self.feed_eof()
                    break
                self.feed(chunk)
        except (ConnectionError, OSError) as exc:
            reason = WorkerTerminatedError(f"Sandbox terminated: {exc}")
            close_on_eof = True
        finally:
            if close_on_eof:
                self.close(reason)

    def close(self, reason: BaseException | None = None) -> int:
        """Mark the channel dead and fail every pending call. Idempotent.

        Returns the number of pending calls that were rejected.
        """
        if self._closed:
            return 0
        self._closed = True
        self._close_reason = reason or WorkerTerminatedError()
        rejected = self._correlator.reject_all(self._close_reason)
        if rejected:
            logger.info("[{}] Rejected {} pending call(s): {}", self.name, rejected, self._close_reason)
        for task in list(self._tasks):
            task.cancel()
        return rejected

    async def wait_idle(self) -> None:
        """Wait for in-flight request handlers to finish (or be cancelled)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _closed_message(self) -> str:
        if isinstance(self._close_reason, WorkerTerminatedError):
            return self._close_reason.message
        return "Sandbox not running"

    def _on_response(self, response: RpcResponse) -> None:
        if response.error is None:
            self._correlator.resolve(response.id, response.result)
            return
        method = self._correlator.method_of(response.id) or "?"
        err = response.error
        self._correlator.reject(response.id, RpcCallError(method, err.code, err.message, err.data))

    async def _dispatch(self, request: RpcRequest) -> None:
        handler = self._methods.get(request.method)
        if handler is None:
            response = make_error_response(
                request.id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {request.method}"
            )
        else:
            try:
                outcome = handler(request.params)
                result = await outcome if inspect.isawaitable(outcome) else outcome
                response = RpcResponse(id=request.id, result=result)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                code, category = classify_exception(exc)
                message = sanitize_error_message(error_message(exc))
                logger.warning("[{}] Method {} failed [{}]: {}", self.name, request.method, code, message)
                data = {"error_code": code, "category": category.value}
                details = getattr(exc, "details", None)
                if isinstance(details, dict) and "handler" in details:
                    data["handler"] = details["handler"]
                response = make_error_response(request.id, rpc_code_for(exc), message, data)
        await self._respond(response)

    async def _respond(self, response: RpcResponse) -> None:
        try:
            await self._send(response)
        except (TypeError, ValueError) as exc:
            logger.warning("[{}] Result for {!r} is not serializable: {}", self.name, response.id, exc)
            fallback = make_error_response(
                response.id, ErrorCode.INTERNAL_ERROR, f"result is not JSON serializable: {exc}"
            )
            try:
                await self._send(fallback)
            except WorkerTerminatedError:
                pass
        except WorkerTerminatedError as exc:
            logger.debug("[{}] Response {!r} not delivered: {}", self.name, response.id, exc)

    async def _send(self, message: Message) -> None:
        data = (encode_message(message) + "\n").encode("utf-8")
        if self._closed:
            raise EndpointClosedError(self._closed_message())
        if self._writer is None:
            raise EndpointClosedError("Sandbox not started")
        try:
            async with self._write_lock:
                self._writer.write(data)
                await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as exc:
            error = WorkerTerminatedError(f"Sandbox terminated: write failed ({exc})")
            self.close(error)
            raise error from exc

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
