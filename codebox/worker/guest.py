"""Compile and run guest snippets with an injected console and handler proxies."""

from __future__ import annotations

import ast
import builtins
import inspect
import json
import textwrap
from types import CodeType
from typing import Any, Callable, Mapping, Sequence

GUEST_FILENAME = "<guest>"
GUEST_FUNCTION_NAME = "__codebox_guest__"
# names bound in every guest program besides the handler proxies
INJECTED_NAMES = frozenset({"console", "context", "print"})
_FUNCTION_TEMPLATE = f"async def {GUEST_FUNCTION_NAME}():\n    pass\n"


def format_value(value: Any) -> str:
    """Render one console argument: containers as indented JSON, the rest with str()."""
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return repr(value)
    return str(value)


class ConsoleSink:
    """Per-execution log buffer handed to guest code as `console`."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def _emit(self, prefix: str, args: tuple[Any, ...]) -> None:
        self.lines.append(prefix + " ".join(format_value(arg) for arg in args))

    def log(self, *args: Any) -> None:
        self._emit("", args)

    def info(self, *args: Any) -> None:
        self._emit("INFO: ", args)

    def warn(self, *args: Any) -> None:
        self._emit("WARN: ", args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._emit("ERROR: ", args)

    def debug(self, *args: Any) -> None:
        self._emit("DEBUG: ", args)

    def print(self, *args: Any, sep: str | None = " ", end: str | None = "\n", file: Any = None, flush: bool = False) -> None:
        """Drop-in for the `print` builtin; writes to the log unless a file is given."""
        if file is not None:
            builtins.print(*args, sep=sep, end=end, file=file, flush=flush)
            return
        text = (" " if sep is None else sep).join(str(arg) for arg in args)
        self.lines.append(text)

    def snapshot(self) -> list[str]:
        return list(self.lines)


class GuestProgram:
    """
    A guest snippet compiled into an async function.

    The snippet's statements become the body of
    `async def __codebox_guest__(console, context, <handler names>...)`, so
    top-level `return` and `await` work. The function is assembled at the
    AST level from the parsed snippet; no source text is concatenated.
    Each `run()` evaluates it in a fresh namespace that holds only the
    builtins, with `print` routed to that run's console.
    """

    def __init__(self, code: str, handler_names: Sequence[str] = ()):
        self.handler_names = list(handler_names)
        self._code = self._compile(code, ["console", "context", *self.handler_names])

    @staticmethod
    def _compile(code: str, params: list[str]) -> CodeType:
        tree = ast.parse(textwrap.dedent(code), filename=GUEST_FILENAME, mode="exec")
        template = ast.parse(_FUNCTION_TEMPLATE, filename=GUEST_FILENAME, mode="exec")
        function = template.body[0]
        assert isinstance(function, ast.AsyncFunctionDef)
        function.args.args = [ast.arg(arg=name) for name in params]
        function.body = tree.body or [ast.Pass()]
        ast.fix_missing_locations(template)
        return compile(template, GUEST_FILENAME, "exec")

    def _load(self, console: ConsoleSink) -> Callable[..., Any]:
        guest_builtins = dict(vars(builtins))
        guest_builtins["print"] = console.print
        namespace: dict[str, Any] = {"__builtins__": guest_builtins, "__name__": "__guest__"}
        exec(self._code, namespace)  # noqa: S102
        function = namespace[GUEST_FUNCTION_NAME]
        if inspect.isasyncgenfunction(function):
            raise SyntaxError("'yield' is not allowed at the top level of guest code")
        return function

    async def run(
        self,
        console: ConsoleSink,
        context: Mapping[str, Any],
        proxies: Mapping[str, Callable[..., Any]],
    ) -> Any:
        function = self._load(console)
        return await function(console, context, *(proxies[name] for name in self.handler_names))
