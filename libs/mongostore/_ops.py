from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from pymongo.errors import ExecutionTimeout, NetworkTimeout

from .errors import StoreTimeoutError

T = TypeVar("T")


async def bounded(op: str, aw: Awaitable[T], timeout: Optional[float]) -> T:
    """
    Await a driver call, turning deadline expiry into StoreTimeoutError.

    Server side timeouts reported by the driver map to the same error.
    """
    try:
        if timeout is None:
            return await aw
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError as e:
        raise StoreTimeoutError(f"mongostore: {op}: timed out after {timeout}s") from e
    except (ExecutionTimeout, NetworkTimeout) as e:
        raise StoreTimeoutError(f"mongostore: {op}: {e}") from e
