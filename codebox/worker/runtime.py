"""Worker process entry point: serve JSON-RPC over stdin/stdout.

Started by the host as `python -m codebox.worker`. The protocol owns the
original stdout; fd 1 is pointed at stderr so anything else that writes to
stdout (guest code, C extensions) ends up in the diagnostic stream.
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import BinaryIO

import typer
from loguru import logger

from codebox.rpc.endpoint import Endpoint
from codebox.worker.bridge import ExecutionBridge

app = typer.Typer(add_completion=False, help="codebox worker (spawned by the host; speaks JSON-RPC on stdio)")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:HH:mm:ss.SSS} | {level: <8} | worker | {message}",
        backtrace=False,
        diagnose=False,
    )


def apply_memory_limit(memory_limit_mb: int | None) -> None:
    """Cap the worker's address space (POSIX only)."""
    if not memory_limit_mb:
        return
    try:
        import resource
    except ImportError:
        logger.warning("Memory limit of {}MB ignored: resource limits unsupported on this platform", memory_limit_mb)
        return
    limit = int(memory_limit_mb) * 1024 * 1024
    try:
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
    except (ValueError, OSError) as e:
        logger.warning("Could not apply memory limit of {}MB: {}", memory_limit_mb, e)
        return
    logger.debug("Applied memory limit of {}MB", memory_limit_mb)


def claim_protocol_stdout() -> BinaryIO:
    """Take the real stdout for the protocol and redirect fd 1 to stderr."""
    sys.stdout.flush()
    protocol_fd = os.dup(1)
    os.dup2(2, 1)
    sys.stdout = sys.stderr
    return os.fdopen(protocol_fd, "wb", buffering=0)


async def serve(stdin: BinaryIO, stdout: BinaryIO, *, handler_timeout_ms: float | None = None) -> None:
    """Run the worker endpoint until the host closes stdin."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stdin)
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
    writer = asyncio.StreamWriter(transport, protocol, None, loop)

    endpoint = Endpoint("worker")
    endpoint.attach(writer)
    ExecutionBridge(endpoint, handler_timeout_ms=handler_timeout_ms)
    logger.debug("Worker pid={} serving", os.getpid())
    try:
        await endpoint.run(reader)
        await endpoint.wait_idle()
    finally:
        writer.close()
    logger.debug("Worker pid={} input closed; exiting", os.getpid())


@app.command()
def main(
    memory_limit_mb: int = typer.Option(None, "--memory-limit-mb", help="Address-space limit in MB"),
    handler_timeout_ms: int = typer.Option(None, "--handler-timeout-ms", help="Deadline for callHandler requests"),
    log_level: str = typer.Option("INFO", "--log-level", envvar="CODEBOX_WORKER_LOG_LEVEL", help="Worker log level"),
) -> None:
    """Serve executeCode requests on stdin/stdout."""
    configure_logging(log_level)
    apply_memory_limit(memory_limit_mb)
    protocol_out = claim_protocol_stdout()
    try:
        asyncio.run(serve(sys.stdin.buffer, protocol_out, handler_timeout_ms=handler_timeout_ms))
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Fatal error in sandbox worker")
        raise typer.Exit(1)
