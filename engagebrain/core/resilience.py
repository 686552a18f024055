"""
Bounded calls to optional collaborators.

Every external call the pipeline makes (generation, retrieval, signal
inference, count lookups) goes through `bounded_call`, which enforces a
timeout and turns any failure into a `CollaboratorResult` instead of an
exception. Callers branch on `result.ok` and surface `result.reason` in
their explanation/telemetry fields.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CollaboratorResult(Generic[T]):
    """Outcome of a bounded collaborator call"""
    ok: bool
    value: Optional[T] = None
    reason: str = "ok"
    latency_ms: int = 0

    @classmethod
    def success(cls, value: T, latency_ms: int = 0) -> "CollaboratorResult[T]":
        return cls(ok=True, value=value, reason="ok", latency_ms=latency_ms)

    @classmethod
    def failure(cls, reason: str, latency_ms: int = 0) -> "CollaboratorResult[T]":
        return cls(ok=False, value=None, reason=reason, latency_ms=latency_ms)


async def bounded_call(
    name: str,
    call: Callable[[], Awaitable[Any]],
    timeout_seconds: float
) -> CollaboratorResult:
    """
    Await `call()` with a timeout.

    Args:
        name: Collaborator name used in log lines
        call: Zero-argument coroutine factory
        timeout_seconds: Hard bound on the call

    Returns:
        CollaboratorResult with reason "timeout" or "error:<message>" on failure
    """
    start = time.monotonic()
    try:
        value = await asyncio.wait_for(call(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.warning(f"{name} timed out after {elapsed}ms (limit {timeout_seconds}s)")
        return CollaboratorResult.failure("timeout", latency_ms=elapsed)
    except Exception as e:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.warning(f"{name} failed after {elapsed}ms: {e}")
        return CollaboratorResult.failure(f"error:{e}", latency_ms=elapsed)

    elapsed = int((time.monotonic() - start) * 1000)
    return CollaboratorResult.success(value, latency_ms=elapsed)
