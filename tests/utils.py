"""
Utility functions for shardsweep tests.

This module provides:
- Polling helpers that accept sync or async predicates
- Timing helpers for checking retry spacing
"""

import asyncio
import time
from typing import Any, Callable, List


async def wait_until(predicate: Callable[[], Any],
                     timeout: float = 5.0,
                     interval: float = 0.005,
                     description: str = "condition") -> Any:
    """
    Wait for a condition to become true, with timeout.

    Args:
        predicate: Function that returns truthy value when condition is met
        timeout: Maximum time to wait in seconds
        interval: Time between checks in seconds
        description: Description for error messages

    Returns:
        Result of predicate when it becomes truthy

    Raises:
        TimeoutError: If condition is not met within timeout
    """
    start_time = time.monotonic()
    last_result = None

    while time.monotonic() - start_time < timeout:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        last_result = result
        await asyncio.sleep(interval)

    raise TimeoutError(f"Condition '{description}' not met within {timeout}s. Last result: {last_result}")


def gaps(timestamps: List[float]) -> List[float]:
    """Intervals between consecutive timestamps."""
    return [b - a for a, b in zip(timestamps, timestamps[1:])]
