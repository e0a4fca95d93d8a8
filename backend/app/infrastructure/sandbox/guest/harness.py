"""
Sandbox harness - entry point of the child interpreter.

The host writes a single JSON request line to stdin::

    {"correlationId": 7, "markup": "...", "style": "...", "script": "...",
     "tests": [{"index": 0, "name": "...", "assertion": "..."}]}

The harness applies markup and style, announces ``ready``, locks the
process down, runs the script and then streams one ``test-result`` per
assertion. A script fault is reported as ``fatal`` and ends the run.
"""

import builtins
import importlib
import json
import sys
from typing import Any, Dict

from .channel import Channel, Console, ConsoleStream, log_sink
from .document import DocumentView, Stylesheet, build_document
from .evaluator import describe_fault, evaluate

ALLOWED_MODULES = frozenset({
    "collections",
    "datetime",
    "decimal",
    "fractions",
    "functools",
    "itertools",
    "json",
    "math",
    "operator",
    "random",
    "re",
    "statistics",
    "string",
    "textwrap",
})

# Imported lazily by allowed modules; must be loaded before lock-down
_PRELOAD = ("_strptime", "collections.abc")

_REMOVED_BUILTINS = frozenset({
    "__import__",
    "breakpoint",
    "compile",
    "copyright",
    "credits",
    "eval",
    "exec",
    "exit",
    "globals",
    "help",
    "input",
    "license",
    "locals",
    "memoryview",
    "open",
    "quit",
    "vars",
})

_BLOCKED_EVENTS = (
    "open",
    "os.",
    "subprocess.",
    "socket.",
    "shutil.",
    "ctypes.",
    "urllib.",
    "http.",
    "ftplib.",
    "smtplib.",
    "webbrowser.",
    "glob.",
    "pty.",
    "msvcrt.",
    "winreg.",
)


def _guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
    if level != 0 or name.split(".")[0] not in ALLOWED_MODULES:
        raise ImportError(f"import of '{name}' is not allowed in the sandbox")
    return builtins.__import__(name, globals, locals, fromlist, level)


def restricted_builtins(console: Console) -> Dict[str, Any]:
    """Builtins visible to submissions and assertions."""
    safe = {
        key: value
        for key, value in vars(builtins).items()
        if key not in _REMOVED_BUILTINS
    }
    safe["__import__"] = _guarded_import
    safe["print"] = console.print
    return safe


def build_namespace(request: Dict[str, Any], channel: Channel) -> Dict[str, Any]:
    """Apply the markup and style channels and expose them to the script."""
    console = Console(log_sink(channel))
    document = build_document(str(request.get("markup") or ""))
    styles = Stylesheet.parse(str(request.get("style") or ""))
    view = DocumentView(document, styles)

    namespace: Dict[str, Any] = {
        "__builtins__": restricted_builtins(console),
        "__name__": "__submission__",
        "document": document,
        "styles": styles,
        "console": console,
        "query": view.query,
        "query_all": view.query_all,
        "computed_style": view.computed_style,
    }
    namespace["window"] = namespace
    return namespace


def _deny_host_access(event: str, args: tuple) -> None:
    if event.startswith(_BLOCKED_EVENTS):
        raise PermissionError(f"{event} is not permitted in the sandbox")


def lock_down() -> None:
    """
    Preload allowed modules, then deny file, process and network access.

    Audit hooks cannot be removed once installed, so this is one-way.
    """
    for module in sorted(ALLOWED_MODULES) + list(_PRELOAD):
        importlib.import_module(module)
    sys.addaudithook(_deny_host_access)


def main() -> int:
    sys.stdin.reconfigure(encoding="utf-8")
    sys.stdout.reconfigure(encoding="utf-8")
    host_stream = sys.stdout

    try:
        request = json.loads(sys.stdin.readline())
        correlation_id = int(request["correlationId"])
    except (ValueError, KeyError, TypeError) as exc:
        sys.stderr.write(f"invalid sandbox request: {exc}\n")
        return 2

    channel = Channel(host_stream, correlation_id)
    emit = log_sink(channel)
    sys.stdout = sys.__stdout__ = ConsoleStream(emit, "log")
    sys.stderr = sys.__stderr__ = ConsoleStream(emit, "error")

    try:
        namespace = build_namespace(request, channel)
        script = compile(str(request.get("script") or ""), "<script>", "exec")
    except BaseException as exc:
        channel.fatal(describe_fault(exc))
        return 1

    channel.ready()
    lock_down()

    try:
        exec(script, namespace)
    except BaseException as exc:
        sys.stdout.flush()
        channel.fatal(describe_fault(exc))
        return 1

    sys.stdout.flush()
    sys.stderr.flush()

    evaluate(
        namespace,
        list(request.get("tests") or []),
        on_result=lambda result: channel.test_result(
            result.index,
            result.name,
            result.passed,
            result.message,
            result.captured_value,
        ),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
