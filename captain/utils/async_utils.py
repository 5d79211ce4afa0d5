# captain/utils/async_utils.py
"""Asynchronous operation utilities"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run async coroutine in sync context

    Args:
        coro: Coroutine to run

    Returns:
        Coroutine result
    """
    loop = None
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # No running loop
        pass

    if loop and loop.is_running():
        # Already in async context, run on a fresh loop in another thread
        import threading

        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except BaseException as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    else:
        return asyncio.run(coro)


async def retry_async(coro_func: Callable[..., Awaitable[T]],
                      *args,
                      max_attempts: int = 3,
                      delay: float = 1.0,
                      backoff: float = 2.0,
                      max_delay: Optional[float] = None,
                      exceptions: tuple = (Exception,),
                      on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
                      **kwargs) -> T:
    """
    Retry async operation with exponential backoff

    Args:
        coro_func: Coroutine function
        *args: Function arguments
        max_attempts: Maximum attempts (including the first)
        delay: Initial delay between retries
        backoff: Backoff multiplier
        max_delay: Upper bound for a single delay
        exceptions: Exceptions that trigger a retry
        on_retry: Called as (attempt, exception, next_delay) before sleeping
        **kwargs: Function keyword arguments

    Returns:
        Function result

    Raises:
        Last exception if all attempts fail
    """
    current_delay = delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await coro_func(*args, **kwargs)
        except exceptions as e:
            if attempt >= max_attempts:
                raise
            if on_retry:
                on_retry(attempt, e, current_delay)
            await asyncio.sleep(current_delay)
            current_delay *= backoff
            if max_delay is not None:
                current_delay = min(current_delay, max_delay)

    raise RuntimeError("retry_async called with max_attempts < 1")


async def run_to_completion(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a coroutine that must not be interrupted half-way

    Cancellation of the caller is deferred until the coroutine has reached
    its own outcome, then re-raised.

    Args:
        coro: Coroutine to protect

    Returns:
        Coroutine result
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if task.done():
            raise
        logger.warning("Cancellation requested during an atomic step; finishing it first")
        await task
        raise


def raise_if_cancelling() -> None:
    """
    Deliver a pending cancellation of the current task immediately

    A cancel requested while the task was not suspended would otherwise
    wait for the next real suspension point, which may be after another
    transaction has already been submitted.
    """
    task = asyncio.current_task()
    if task is not None and task.cancelling():
        raise asyncio.CancelledError()
