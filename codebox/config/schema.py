"""Configuration schema using Pydantic.

Launch configuration handed from the host to the worker supervisor. Values
can come from code, from a JSON file (see `loader.py`) or from `CODEBOX_*`
environment variables.
"""

import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEOUT_MS = 30_000


class SandboxConfig(BaseSettings):
    """Worker launch and call-deadline settings."""

    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)  # default deadline for host -> worker calls
    memory_limit_mb: int | None = Field(default=None, gt=0)  # RLIMIT_AS applied inside the worker
    permission_flags: list[str] = Field(default_factory=list)  # interpreter flags placed before `-m codebox.worker`
    python_executable: str = sys.executable
    start_timeout_ms: int = Field(default=10_000, gt=0)
    stop_grace_ms: int = Field(default=2_000, ge=0)
    handler_timeout_ms: int | None = Field(default=None, gt=0)  # worker -> host callHandler deadline; timeout_ms when unset
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("permission_flags")
    @classmethod
    def _no_empty_flags(cls, value: list[str]) -> list[str]:
        flags = [flag.strip() for flag in value]
        if any(not flag for flag in flags):
            raise ValueError("permission flags must be non-empty strings")
        return flags

    def handler_deadline_ms(self) -> int:
        """Deadline for one host handler call, on both sides of the channel."""
        return self.handler_timeout_ms or self.timeout_ms

    def worker_args(self) -> list[str]:
        """Arguments passed to the worker module after `-m codebox.worker`."""
        args: list[str] = []
        if self.memory_limit_mb:
            args.extend(["--memory-limit-mb", str(self.memory_limit_mb)])
        args.extend(["--handler-timeout-ms", str(self.handler_deadline_ms())])
        return args

    def launch_command(self) -> list[str]:
        """Full argv used to spawn the worker process."""
        return [self.python_executable, *self.permission_flags, "-m", "codebox.worker", *self.worker_args()]

    model_config = SettingsConfigDict(
        env_prefix="CODEBOX_",
        env_nested_delimiter="__",
    )
