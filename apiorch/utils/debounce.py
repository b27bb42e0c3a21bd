"""Debounce helper for bursty callers (search boxes, filter inputs).

Only the last call inside the quiet period reaches the wrapped coroutine
function; every caller of the burst receives that call's outcome.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

def debounce(fn: Callable[..., Awaitable[Any]], delay: float = 0.5) -> Callable[..., Awaitable[Any]]:
    """Wraps an async function so bursts collapse into a single call.

    Args:
        fn: Coroutine function to debounce.
        delay: Quiet period in seconds that must pass before `fn` runs.
    """
    waiters: List[asyncio.Future] = []
    latest: Optional[Tuple[tuple, dict]] = None
    timer: Optional[asyncio.TimerHandle] = None
    running: Set[asyncio.Task] = set()

    async def run(batch: List[asyncio.Future], args: tuple, kwargs: dict) -> None:
        try:
            result = await fn(*args, **kwargs)
        except Exception as e:
            for waiter in batch:
                if not waiter.done():
                    waiter.set_exception(e)
            return
        for waiter in batch:
            if not waiter.done():
                waiter.set_result(result)

    def fire() -> None:
        nonlocal waiters, timer
        batch, waiters, timer = waiters, [], None
        args, kwargs = latest
        logger.debug(f"Debounced {getattr(fn, '__name__', fn)} firing for {len(batch)} caller(s)")
        task = asyncio.get_running_loop().create_task(run(batch, args, kwargs))
        running.add(task)
        task.add_done_callback(running.discard)

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        nonlocal latest, timer
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        waiters.append(waiter)
        latest = (args, kwargs)
        if timer is not None:
            timer.cancel()
        timer = loop.call_later(delay, fire)
        return await waiter

    return wrapper
