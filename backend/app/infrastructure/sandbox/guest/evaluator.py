"""
Test battery evaluator.

Runs every assertion of a battery against the post-script sandbox state.
Each assertion is isolated: whatever it raises is recorded on its own
outcome and evaluation moves on to the next index.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

MAX_CAPTURE_LENGTH = 200

ResultCallback = Callable[["AssertionResult"], None]


@dataclass
class AssertionResult:
    """Outcome of one assertion as seen from inside the sandbox."""
    index: int
    name: str
    passed: bool
    message: str
    captured_value: Optional[str] = None


def describe_fault(exc: BaseException) -> str:
    """``<Type>: <message>`` without a traceback (no source lookups needed)."""
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


def _capture(value: Any) -> Optional[str]:
    try:
        text = repr(value)
    except Exception:
        return None
    if len(text) > MAX_CAPTURE_LENGTH:
        text = text[:MAX_CAPTURE_LENGTH] + "..."
    return text


def evaluate_assertion(index: int, name: str, source: str, namespace: Dict[str, Any]) -> AssertionResult:
    """
    Evaluate a single assertion in ``namespace``.

    Expressions pass when truthy. Sources that are not expressions are run
    as statement blocks and pass when they complete without raising.
    """
    if not source.strip():
        return AssertionResult(index, name, False, "empty assertion")
    try:
        try:
            code = compile(source, f"<test:{index}>", "eval")
        except SyntaxError:
            code = None

        if code is not None:
            value = eval(code, namespace)
            captured = _capture(value)
            if value:
                return AssertionResult(index, name, True, "passed", captured)
            return AssertionResult(index, name, False, f"assertion evaluated to {captured}", captured)

        exec(compile(source, f"<test:{index}>", "exec"), namespace)
        return AssertionResult(index, name, True, "passed")

    except BaseException as exc:  # SystemExit from an assertion must not end the battery
        return AssertionResult(index, name, False, describe_fault(exc))


def evaluate(
    context: Dict[str, Any],
    battery: List[Dict[str, Any]],
    on_result: Optional[ResultCallback] = None,
) -> List[AssertionResult]:
    """
    Evaluate a battery in order, one isolated assertion at a time.

    Args:
        context: Sandbox namespace left behind by the submission's script
        battery: ``[{"index", "name", "assertion"}, ...]`` in battery order
        on_result: Called as soon as each result is known, so results can be
                   streamed before the whole battery finishes

    Returns:
        Results index-aligned with ``battery``
    """
    results = []
    for position, test in enumerate(battery):
        index = int(test.get("index", position))
        result = evaluate_assertion(
            index,
            str(test.get("name", f"test {index}")),
            str(test.get("assertion", "")),
            context,
        )
        results.append(result)
        if on_result is not None:
            on_result(result)
    return results
