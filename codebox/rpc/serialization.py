"""Serialization helpers for line-delimited JSON-RPC frames."""

from __future__ import annotations

import json
from typing import Any

from .protocol import JSONRPC_VERSION, ErrorCode, Message, RpcError, RpcRequest, RpcResponse


def safe_dict(value: Any) -> dict[str, Any]:
    """Return the value when dict-like, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def _valid_id(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def encode_message(message: Message) -> str:
    """Encode a request or response frame into one line of JSON (no newline)."""
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": message.id}
    if isinstance(message, RpcRequest):
        payload["method"] = message.method
        if message.params is not None:
            payload["params"] = message.params
    elif message.error is not None:
        error: dict[str, Any] = {"code": int(message.error.code), "message": message.error.message}
        if message.error.data is not None:
            error["data"] = message.error.data
        payload["error"] = error
    else:
        payload["result"] = message.result
    # ascii escapes keep lone surrogates from guest strings encodable
    return json.dumps(payload, separators=(",", ":"))


def normalize_rpc_error(error: Any) -> RpcError:
    """Normalize unknown error payloads into RpcError."""
    row = safe_dict(error)
    code = row.get("code")
    return RpcError(
        code=code if isinstance(code, int) and not isinstance(code, bool) else ErrorCode.INTERNAL_ERROR,
        message=str(row.get("message") or "rpc failed"),
        data=row.get("data"),
    )


class InvalidRequest(Exception):
    """A JSON-RPC object with a usable id that is neither a request nor a response."""

    def __init__(self, req_id: Any, reason: str):
        super().__init__(reason)
        self.req_id = req_id
        self.reason = reason


def decode_message(line: str) -> Message | None:
    """
    Decode one line into a request or response.

    Returns None for anything that is not a well-formed JSON-RPC 2.0 frame:
    invalid JSON, non-object payloads, a wrong `jsonrpc` tag, or a frame
    without an id that could be answered. Raises InvalidRequest when the
    frame carries an id but its shape is wrong, so the caller can answer it.
    """
    try:
        payload = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or payload.get("jsonrpc") != JSONRPC_VERSION:
        return None
    req_id = payload.get("id")
    if "result" in payload or "error" in payload:
        if not _valid_id(req_id) and req_id is not None:
            return None
        if payload.get("error") is not None:
            return RpcResponse(id=req_id, error=normalize_rpc_error(payload["error"]))
        return RpcResponse(id=req_id, result=payload.get("result"))
    if not _valid_id(req_id):
        return None
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequest(req_id, "method must be a non-empty string")
    return RpcRequest(id=req_id, method=method, params=payload.get("params"))


def make_error_response(req_id: Any, code: int, message: str, data: Any = None) -> RpcResponse:
    """Build an error Response for the given request id."""
    return RpcResponse(id=req_id, error=RpcError(code=int(code), message=message, data=data))
