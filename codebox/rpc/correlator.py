"""Pending-call registry matching responses to requests by id."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from codebox.rpc.protocol import RequestId
from codebox.utils.exceptions import RpcTimeoutError


@dataclass(slots=True)
class PendingCall:
    """One outstanding request: its completion slot and deadline timer."""

    id: RequestId
    method: str
    future: asyncio.Future[Any]
    timeout_ms: float | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class Correlator:
    """
    Maps outstanding request ids to futures, with timeout eviction.

    Every registered id is settled exactly once: by a matching response,
    by its deadline firing, by `reject_all` on termination, or by the
    caller cancelling its wait. Each path pops the entry before touching
    the future, so whichever fires second finds nothing and does nothing.
    All methods must be called from the owning event loop.
    """

    def __init__(self) -> None:
        self._pending: dict[RequestId, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, req_id: object) -> bool:
        return req_id in self._pending

    def method_of(self, req_id: Any) -> str | None:
        try:
            call = self._pending.get(req_id)
        except TypeError:
            return None
        return call.method if call is not None else None

    def register(self, req_id: RequestId, method: str, timeout_ms: float | None = None) -> asyncio.Future[Any]:
        """Store a pending call and return the future its caller awaits."""
        if req_id in self._pending:
            raise ValueError(f"request id already pending: {req_id!r}")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        call = PendingCall(id=req_id, method=method, future=future, timeout_ms=timeout_ms)
        if timeout_ms is not None:
            call.timer = loop.call_later(timeout_ms / 1000.0, self._expire, req_id)
        self._pending[req_id] = call
        future.add_done_callback(lambda _f: self._discard(req_id, future))
        return future

    def resolve(self, req_id: Any, result: Any) -> bool:
        """Complete a pending call with a result. Unknown ids are logged and dropped."""
        call = self._take(req_id)
        if call is None:
            logger.warning("Dropping response for unknown request id {!r}", req_id)
            return False
        call.future.set_result(result)
        return True

    def reject(self, req_id: Any, error: BaseException) -> bool:
        """Fail a pending call. Unknown ids are logged and dropped."""
        call = self._take(req_id)
        if call is None:
            logger.warning("Dropping error for unknown request id {!r}: {}", req_id, error)
            return False
        call.future.set_exception(error)
        return True

    def reject_all(self, error: BaseException) -> int:
        """Fail every pending call with the same error; returns how many were failed."""
        calls = list(self._pending.values())
        self._pending.clear()
        for call in calls:
            self._cancel_timer(call)
            if not call.future.done():
                call.future.set_exception(error)
        return len(calls)

    def _expire(self, req_id: RequestId) -> None:
        call = self._pending.pop(req_id, None)
        if call is None or call.future.done():
            return
        logger.warning("Request {} ({}) timed out after {}ms", req_id, call.method, call.timeout_ms)
        call.future.set_exception(RpcTimeoutError(call.method, call.timeout_ms or 0))

    def _take(self, req_id: Any) -> PendingCall | None:
        try:
            call = self._pending.pop(req_id, None)
        except TypeError:
            return None
        if call is None:
            return None
        self._cancel_timer(call)
        if call.future.done():
            return None
        return call

    def _discard(self, req_id: RequestId, future: asyncio.Future[Any]) -> None:
        # caller cancelled its wait; the slot is gone, a late response is dropped
        call = self._pending.get(req_id)
        if call is not None and call.future is future:
            del self._pending[req_id]
            self._cancel_timer(call)

    @staticmethod
    def _cancel_timer(call: PendingCall) -> None:
        if call.timer is not None:
            call.timer.cancel()
            call.timer = None
