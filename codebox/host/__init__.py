"""Host side: handler registry, worker supervision and the Sandbox facade."""

from codebox.host.handlers import HandlerRegistry
from codebox.host.sandbox import ExecutionResult, Sandbox
from codebox.host.supervisor import WorkerState, WorkerSupervisor

__all__ = ["ExecutionResult", "HandlerRegistry", "Sandbox", "WorkerState", "WorkerSupervisor"]
