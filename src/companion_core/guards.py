"""Timeout and error mapping for store calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .exceptions import CompanionCoreError, PersistenceError

T = TypeVar("T")


async def store_call(
    awaitable: Awaitable[T],
    operation: str,
    timeout: float,
    shield: bool = False,
) -> T:
    """Await a store operation with a timeout, mapping failures to PersistenceError.

    Args:
        awaitable: The store coroutine
        operation: Operation name used in the error message
        timeout: Seconds before giving up on the call
        shield: Let the underlying write finish even if the caller is
            cancelled or times out

    Raises:
        PersistenceError: The call failed or timed out
    """
    if shield:
        awaitable = asyncio.shield(awaitable)
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except CompanionCoreError:
        raise
    except asyncio.TimeoutError as e:
        raise PersistenceError(operation, f"timed out after {timeout}s") from e
    except Exception as e:
        raise PersistenceError(operation, repr(e)) from e
