"""
ledger_engines.tracer -- ``@traced_engine`` emitting LEDGER_ENGINE_TRACE.

Responsibility:
    Wrap pure engine calls with one structured trace record carrying the
    engine name and version, a deterministic fingerprint of selected
    keyword inputs, and the call duration.

Architecture position:
    Engines -- infrastructure for the pure planning layer.  Emits a log
    record only; uses the plain ``logging`` module under the
    ``ledger_kernel.engines.tracer`` name so the engine layer does not
    depend on kernel logging setup.

Invariants enforced:
    - The fingerprint is a function of the listed kwargs only: dict keys
      are sorted, sequences keep order, dataclasses are flattened by field.
    - The decorator never mutates arguments or results.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

_logger = logging.getLogger("ledger_kernel.engines.tracer")

TRACE_MESSAGE = "LEDGER_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """Stable string form of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        # 5 and 5.000 fingerprint the same
        return format(value.normalize(), "f")
    if isinstance(value, (int, float, str)):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return _canonicalize(fields)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named kwargs; missing ones hash as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator emitting LEDGER_ENGINE_TRACE after each successful call.

    Args:
        engine_name: Engine identifier, e.g. "batch_allocation".
        engine_version: Engine version, e.g. "1.0".
        fingerprint_fields: Keyword argument names hashed into the
            input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                TRACE_MESSAGE,
                extra={
                    "trace_type": TRACE_MESSAGE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
