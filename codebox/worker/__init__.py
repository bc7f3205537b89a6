"""Worker side: runs guest code and proxies handler calls back to the host."""

from codebox.worker.bridge import ExecutionBridge
from codebox.worker.guest import ConsoleSink, GuestProgram

__all__ = ["ConsoleSink", "ExecutionBridge", "GuestProgram"]
