"""Bidirectional JSON-RPC engine shared by the host and the worker."""

from .correlator import Correlator, PendingCall
from .endpoint import Endpoint
from .framer import LineFramer
from .protocol import ErrorCode, Method, RpcError, RpcRequest, RpcResponse
from .serialization import decode_message, encode_message, make_error_response, normalize_rpc_error, safe_dict

__all__ = [
    "Correlator",
    "Endpoint",
    "ErrorCode",
    "LineFramer",
    "Method",
    "PendingCall",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    "decode_message",
    "encode_message",
    "make_error_response",
    "normalize_rpc_error",
    "safe_dict",
]
