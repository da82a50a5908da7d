"""
Deadline helper for storage coroutines.

`asyncio.wait_for` cancels the wrapped coroutine when the deadline expires; the resulting
`asyncio.TimeoutError` is re-raised as `OperationTimeoutError` so callers see the core taxonomy.
Caller-initiated cancellation (`asyncio.CancelledError`) is never converted.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

from school_tenancy.exceptions import OperationTimeoutError
from school_tenancy.managers.logging_manager import get_logger

T = TypeVar("T")

logger = get_logger(prefix="[Deadline]")


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Await `awaitable`, failing with `OperationTimeoutError` after `timeout` seconds.

    Args:
        awaitable: The storage coroutine.
        timeout: Deadline in seconds; `None` waits indefinitely.
        operation: Operation name for the error message and logs.
        context: Extra error context (tenant, role).
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except OperationTimeoutError:
        # Raised by the inner operation itself (nested deadline or server-side timeout).
        raise
    except asyncio.TimeoutError as exc:
        logger.warning("%s exceeded its %.3fs deadline (%s)", operation, timeout, context or {})
        raise OperationTimeoutError(
            f"{operation} did not complete within {timeout:.3f}s",
            {"operation": operation, "timeout": timeout, **(context or {})},
        ) from exc
