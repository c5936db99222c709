"""
``@traced_engine``: one SETTLEMENT_ENGINE_TRACE log line per engine call.

The line names the engine and its version, carries a short fingerprint of the
keyword arguments listed in ``fingerprint_fields`` and the wall time spent.
Two calls with equal inputs produce the same fingerprint, which is how a
proposal shown to a user is matched to the allocation later committed.

    @traced_engine("allocation", "1.0", fingerprint_fields=("strategy",))
    def allocate(self, *, strategy, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable
from typing import Any

from settlement_kernel.logging_config import get_logger
from settlement_kernel.utils.hashing import canonical_json

logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    selected = {name: kwargs.get(name) for name in fields}
    digest = hashlib.sha256(canonical_json(selected).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            logger.info("SETTLEMENT_ENGINE_TRACE", extra={
                "trace_type": "SETTLEMENT_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "function": func.__qualname__,
                "input_fingerprint": (
                    compute_input_fingerprint(fingerprint_fields, kwargs)
                    if fingerprint_fields else ""
                ),
                "duration_ms": round(elapsed_ms, 2),
            })
            return result

        return wrapper

    return decorator
