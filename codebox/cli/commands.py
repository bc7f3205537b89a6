"""CLI commands for codebox.

`codebox run` executes a snippet file in a fresh worker; host handlers can
be wired in from importable Python callables with `--handler name=module:attr`.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from codebox import __logo__, __version__
from codebox.cli.logging_utils import configure_console_logging, ensure_rotating_log_file
from codebox.config.loader import load_config
from codebox.config.schema import SandboxConfig
from codebox.host.handlers import HandlerFunction
from codebox.host.sandbox import ExecutionResult, Sandbox
from codebox.utils.exceptions import CodeboxError

app = typer.Typer(
    name="codebox",
    help=f"{__logo__} codebox - run Python snippets in a sandboxed worker",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def load_handler_spec(spec: str) -> tuple[str, HandlerFunction]:
    """Resolve `name=package.module:attribute` into a (name, callable) pair."""
    name, sep, target = spec.partition("=")
    module_name, colon, attr = target.partition(":")
    if not sep or not colon or not name.strip() or not module_name.strip() or not attr.strip():
        raise typer.BadParameter(f"expected name=module:attribute, got {spec!r}", param_hint="--handler")
    try:
        module = importlib.import_module(module_name.strip())
    except ImportError as e:
        raise typer.BadParameter(f"cannot import {module_name}: {e}", param_hint="--handler") from e
    fn = getattr(module, attr.strip(), None)
    if not callable(fn):
        raise typer.BadParameter(f"{target} is not callable", param_hint="--handler")
    return name.strip(), fn


def _read_source(file: str) -> str:
    if file == "-":
        return sys.stdin.read()
    path = Path(file).expanduser()
    if not path.is_file():
        raise typer.BadParameter(f"snippet file not found: {path}", param_hint="FILE")
    return path.read_text(encoding="utf-8")


def _parse_context(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"invalid JSON: {e}", param_hint="--context") from e
    if not isinstance(value, dict):
        raise typer.BadParameter("context must be a JSON object", param_hint="--context")
    return value


async def run_snippet(
    config: SandboxConfig,
    code: str,
    context: dict[str, Any],
    handlers: list[tuple[str, HandlerFunction]],
) -> ExecutionResult:
    sandbox = Sandbox(config)
    for name, fn in handlers:
        sandbox.register_handler(name, fn)
    async with sandbox:
        return await sandbox.execute(code, context)


def _print_result(result: ExecutionResult) -> None:
    for line in result.logs:
        console.print(line, markup=False, highlight=False)
    if result.error is not None:
        err_console.print(f"[red]✗[/red] {result.error}", markup=True, highlight=False)
        return
    if result.result is not None:
        console.print(json.dumps(result.result, indent=2, ensure_ascii=False), markup=False)


@app.command("run")
def run(
    file: str = typer.Argument(..., help="Snippet file to execute, or - to read stdin"),
    timeout_ms: int = typer.Option(None, "--timeout-ms", help="Execution deadline in milliseconds"),
    memory_limit_mb: int = typer.Option(None, "--memory-limit-mb", help="Worker address-space limit in MB"),
    flags: list[str] = typer.Option(None, "--flag", help="Interpreter flag for the worker (repeatable)"),
    handler_specs: list[str] = typer.Option(None, "--handler", help="Host handler as name=module:attribute (repeatable)"),
    context: str = typer.Option(None, "--context", help="JSON object exposed to the snippet as `context`"),
    config_path: Path = typer.Option(None, "--config", help="JSON config file (camelCase or snake_case keys)"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result object as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    log_file: bool = typer.Option(False, "--log-file", help="Also write logs to ~/.codebox/logs/run.log"),
) -> None:
    """Execute a Python snippet in a sandboxed worker."""
    configure_console_logging(verbose)
    if log_file:
        ensure_rotating_log_file("run", level="DEBUG" if verbose else "INFO")

    try:
        cfg = load_config(config_path) if config_path else SandboxConfig()
    except ValueError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(2) from e
    overrides: dict[str, Any] = {}
    if timeout_ms is not None:
        overrides["timeout_ms"] = timeout_ms
    if memory_limit_mb is not None:
        overrides["memory_limit_mb"] = memory_limit_mb
    if flags:
        overrides["permission_flags"] = [*cfg.permission_flags, *flags]
    if overrides:
        cfg = cfg.model_copy(update=overrides)

    code = _read_source(file)
    ctx = _parse_context(context)
    handlers = [load_handler_spec(spec) for spec in handler_specs or []]

    try:
        result = asyncio.run(run_snippet(cfg, code, ctx, handlers))
    except CodeboxError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(2) from e

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        _print_result(result)
    if not result.ok:
        raise typer.Exit(1)


@app.command("version")
def version() -> None:
    """Show the codebox version."""
    console.print(f"{__logo__} codebox v{__version__}")
