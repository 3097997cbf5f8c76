"""Per-task logging context stored in contextvars.

Worker jobs bind ``job_id`` and request capture binds ``correlation_id`` here,
so every log line emitted while handling them carries the same keys.
"""

from __future__ import annotations

import contextlib
from contextvars import ContextVar
from typing import Any, Dict, Iterator


_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def get_request_context() -> Dict[str, Any]:
    """Return a copy of the current context."""
    context = _request_context.get()
    return dict(context) if context else {}


@contextlib.contextmanager
def bound_request_context(**values: Any) -> Iterator[Dict[str, Any]]:
    """Bind values for the duration of a block and restore the previous context after."""
    merged = get_request_context()
    merged.update({key: value for key, value in values.items() if value is not None})
    token = _request_context.set(merged)
    try:
        yield get_request_context()
    finally:
        _request_context.reset(token)
