"""
Exception hierarchy and error handling utilities for codebox.

Provides:
- Custom exception classes with error codes
- Error categorization (fatal, timeout, validation, ...)
- Safe error message formatting (no sensitive data leak)
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"


class CodeboxError(Exception):
    """Base exception for all codebox errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(CodeboxError):
    """Input validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", category=ErrorCategory.VALIDATION, details=details)


class InvalidParamsError(CodeboxError):
    """Request parameters do not match what the method expects."""

    def __init__(self, method: str, message: str):
        super().__init__(
            message,
            code="INVALID_PARAMS",
            category=ErrorCategory.VALIDATION,
            details={"method": method},
        )


class HandlerNotFoundError(CodeboxError):
    """Guest code asked for a handler the host never registered."""

    def __init__(self, name: str):
        super().__init__(
            f"Handler not found: {name}",
            code="HANDLER_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"handler": name},
        )


class RpcCallError(CodeboxError):
    """The remote side answered a request with an error Response."""

    def __init__(self, method: str, rpc_code: int, message: str, data: Any = None):
        super().__init__(
            message,
            code="RPC_ERROR",
            category=ErrorCategory.PROTOCOL,
            details={"method": method, "rpc_code": rpc_code},
        )
        self.rpc_code = rpc_code
        self.data = data

    def __str__(self) -> str:
        return self.message


class RpcTimeoutError(CodeboxError):
    """No response arrived before the call's deadline."""

    def __init__(self, method: str, timeout_ms: float):
        super().__init__(
            f"Request timeout after {timeout_ms:g}ms",
            code="TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"method": method, "timeout_ms": timeout_ms},
        )


class WorkerTerminatedError(CodeboxError):
    """Synthetic failure delivered to every pending call when the channel dies."""

    def __init__(self, reason: str = "Sandbox terminated"):
        super().__init__(reason, code="TERMINATED", category=ErrorCategory.FATAL)

    def __str__(self) -> str:
        return self.message


class EndpointClosedError(WorkerTerminatedError):
    """A call was attempted on an endpoint whose channel is already gone."""

    def __init__(self, reason: str = "Sandbox not running"):
        super().__init__(reason)
        self.code = "ENDPOINT_CLOSED"


class SandboxStateError(CodeboxError):
    """Operation not allowed in the sandbox's current lifecycle state."""

    def __init__(self, message: str, state: str):
        super().__init__(message, code="INVALID_STATE", category=ErrorCategory.VALIDATION, details={"state": state})


class SandboxStartError(CodeboxError):
    """Worker process could not be spawned or never became ready."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="START_FAILED", category=ErrorCategory.FATAL, details=details)


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"sk-[a-zA-Z0-9]{20,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def classify_exception(exc: Exception) -> tuple[str, ErrorCategory]:
    """
    Classify an exception and return (error_code, category).

    Returns:
        Tuple of (error_code, category)
    """
    if isinstance(exc, CodeboxError):
        return exc.code, exc.category

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "TIMEOUT", ErrorCategory.TIMEOUT

    if isinstance(exc, json.JSONDecodeError):
        return "JSON_PARSE_ERROR", ErrorCategory.VALIDATION

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return "INVALID_VALUE", ErrorCategory.VALIDATION

    if isinstance(exc, (BrokenPipeError, ConnectionError)):
        return "CONNECTION_ERROR", ErrorCategory.FATAL

    return "INTERNAL_ERROR", ErrorCategory.FATAL


def error_message(exc: BaseException) -> str:
    """Human message of an exception without the `[CODE]` prefix."""
    if isinstance(exc, CodeboxError):
        return exc.message
    return str(exc) or type(exc).__name__
