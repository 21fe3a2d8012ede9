"""Flatten exceptions (and their cause chains) into plain log records."""

from __future__ import annotations

import traceback
from typing import Any

CAUSED_BY = "\nCaused by: "


def is_error_like(value: Any) -> bool:
    if isinstance(value, BaseException):
        return True
    stack = getattr(value, "stack", None)
    return isinstance(stack, str) and bool(stack)


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return object.__repr__(value)


def _stack_text(err: Any) -> str:
    stack = getattr(err, "stack", None)
    if isinstance(stack, str) and stack:
        return stack
    if isinstance(err, BaseException):
        if err.__traceback__ is not None:
            lines = traceback.format_exception(type(err), err, err.__traceback__, chain=False)
        else:
            lines = traceback.format_exception_only(type(err), err)
        return "".join(lines).rstrip("\n")
    return _safe_str(err)


def _cause_of(err: Any) -> Any:
    if isinstance(err, BaseException):
        if err.__cause__ is not None:
            return err.__cause__
        if err.__context__ is not None and not err.__suppress_context__:
            return err.__context__
    cause = getattr(err, "cause", None)
    if callable(cause):
        try:
            return cause()
        except Exception:
            return None
    return None


def full_stack(err: Any) -> str:
    """Stack text of ``err`` followed by every cause, outermost first."""

    parts: list[str] = []
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(_stack_text(current))
        current = _cause_of(current) or None
    return CAUSED_BY.join(parts)


def serialize_error(err: Any) -> Any:
    if not err or not is_error_like(err):
        return err

    record: dict[str, Any] = {
        "message": _safe_str(err),
        "name": type(err).__name__,
        "stack": full_stack(err),
    }
    code = getattr(err, "code", None)
    if code is None:
        code = getattr(err, "errno", None)
    for key, value in (
        ("code", code),
        ("signal", getattr(err, "signal", None)),
        ("data", getattr(err, "data", None)),
    ):
        if value is not None:
            record[key] = value
    return record
