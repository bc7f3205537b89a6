"""
codebox - run untrusted Python snippets in a worker process that can call back into the host.
"""

__version__ = "0.1.0"
__logo__ = "📦"

from codebox.config.schema import SandboxConfig
from codebox.host.sandbox import ExecutionResult, Sandbox

__all__ = ["ExecutionResult", "Sandbox", "SandboxConfig", "__version__"]
