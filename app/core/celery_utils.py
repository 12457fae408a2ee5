"""
Helpers for running async code inside Celery tasks.

The async engine's connection pool is bound to the event loop that opened
it. asyncio.run() creates and closes a loop per call, which leaves pooled
connections attached to a dead loop on the next task run. Tasks therefore
share one long-lived loop per worker process.
"""

import asyncio


def run_async_task(coro):
    """
    Run a coroutine on the worker's persistent event loop.

    Usage:
        @celery_app.task
        def sweep():
            return run_async_task(_sweep())
    """
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop.run_until_complete(coro)

