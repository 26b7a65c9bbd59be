"""
expense_engines.tracer -- ``@traced_engine`` decorator for pure engines.

Wraps an engine entry point with one structured ``engine_trace`` log
record: engine name, engine version, a short fingerprint of selected
keyword inputs, and the duration.  The decorator only reads arguments and
logs; it never mutates inputs or adds I/O to the engine itself.

Usage::

    @traced_engine("workflow", "1.0", fingerprint_fields=("approver_id",))
    def apply_approval(workflow, *, approver_id, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

# Sits under the kernel namespace so configure_logging() picks it up,
# without importing kernel logging infrastructure into the engines.
_logger = logging.getLogger("expense_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, dict):
        items = sorted(value.items())
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named keyword arguments.

    Missing fields count as ``null``; identical inputs always give the
    same fingerprint.
    """
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator emitting an ``engine_trace`` record per invocation."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields else ""
            )
            t0 = time.monotonic()
            result = func(*args, **kwargs)
            _logger.debug(
                "engine_trace",
                extra={
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
