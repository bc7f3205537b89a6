"""JSON-RPC 2.0 message models shared by the host and the worker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


class ErrorCode(IntEnum):
    """Standard JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class Method:
    """Method names spoken over the sandbox channel."""

    EXECUTE_CODE = "executeCode"
    CALL_HANDLER = "callHandler"
    PING = "ping"


@dataclass(slots=True)
class RpcError:
    """Error payload carried by a failed Response."""

    code: int
    message: str
    data: Any = None


@dataclass(slots=True)
class RpcRequest:
    """Request frame: `{id, method, params}`."""

    id: RequestId
    method: str
    params: Any = None


@dataclass(slots=True)
class RpcResponse:
    """Response frame: `{id, result}` or `{id, error}`."""

    id: RequestId | None
    result: Any = None
    error: RpcError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Message = Union[RpcRequest, RpcResponse]
