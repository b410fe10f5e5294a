"""
Retry and polling primitives.

This module provides:
- ``retry_call``: bounded attempts with a fixed delay for transient remote errors
- ``poll_until``: wall-clock bounded polling where a timeout is always fatal
- ``wait_for_transfer_count``: polls a node until it reports N shard transfers

Exhausting a retry budget or a poll bound raises a ``FatalError`` subclass;
nothing here swallows a failure.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from shardsweep.errors import PollTimeoutError, RemoteError, RetryExhaustedError
from shardsweep.logging import get_logger
from shardsweep.nodes import Node

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_call(operation: Callable[[], Awaitable[T]],
                     attempts: int,
                     delay: float,
                     description: str = "remote call",
                     node: Optional[str] = None) -> T:
    """
    Await ``operation`` until it succeeds, at most ``attempts`` times.

    Only ``RemoteError`` is retried; anything else propagates immediately.
    ``delay`` seconds are slept between attempts (not after the last one).

    Raises:
        RetryExhaustedError: if every attempt raised ``RemoteError``
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Optional[RemoteError] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except RemoteError as e:
            last_error = e
            retries_left = attempts - attempt
            if retries_left == 0:
                break
            where = f", node {node}" if node else ""
            logger.warning(f"Failed to {description} ({retries_left} retries left{where}): {e}")
            await asyncio.sleep(delay)

    raise RetryExhaustedError(description, attempts, last_error)


async def poll_until(predicate: Callable[[], Awaitable[Any]],
                     timeout: float,
                     interval: float,
                     description: str = "condition") -> Any:
    """
    Poll an async predicate until it returns a truthy value.

    The predicate is evaluated at least once. Errors raised by the predicate
    propagate; only the wall-clock bound is handled here.

    Raises:
        PollTimeoutError: if the condition is not met within ``timeout`` seconds
    """
    start = time.monotonic()
    last_result: Any = None

    while True:
        last_result = await predicate()
        if last_result:
            return last_result
        if time.monotonic() - start > timeout:
            break
        await asyncio.sleep(interval)

    raise PollTimeoutError(
        f"Timeout waiting for {description} after {timeout}s (last result: {last_result!r})"
    )


async def wait_for_transfer_count(node: Node,
                                  collection: str,
                                  count: int,
                                  timeout: float,
                                  interval: float,
                                  attempts: int = 1,
                                  retry_interval: float = 0.0) -> None:
    """Block until ``node`` reports exactly ``count`` shard transfers."""

    async def transfer_count_reached() -> bool:
        info = await retry_call(
            lambda: node.handle.cluster_info(collection),
            attempts=attempts,
            delay=retry_interval,
            description="get collection cluster info",
            node=node.name,
        )
        return info.transfer_count == count

    await poll_until(
        transfer_count_reached,
        timeout=timeout,
        interval=interval,
        description=f"transfer count {count} on {node.name}",
    )


async def wait_for_green(node: Node, collection: str, timeout: float, interval: float,
                         attempts: int = 1, retry_interval: float = 0.0) -> None:
    """Block until ``node`` reports the collection status as green."""

    async def is_green() -> bool:
        status = await retry_call(
            lambda: node.handle.collection_status(collection),
            attempts=attempts,
            delay=retry_interval,
            description="get collection info",
            node=node.name,
        )
        return status == "green"

    await poll_until(is_green, timeout=timeout, interval=interval,
                     description=f"green status on {node.name}")
