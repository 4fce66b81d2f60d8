import asyncio
import logging
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger("core.update_queue")


class UpdateQueue:
    """
    Single-lane queue that applies shared-state updates one at a time.

    Job executions run concurrently, but their completion events (outcome,
    daily counter, cooldown, state snapshot) are funnelled through here so two
    jobs finishing together can never interleave their writes.
    """
    def __init__(self):
        self._queue: asyncio.Queue[Tuple[Callable[..., Any], tuple, dict, asyncio.Future]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    async def submit(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Enqueue a synchronous update and wait until it has been applied.

        Args:
            func: Callable applying the update to the shared state.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        await self._queue.put((func, args, kwargs, future))

        # Start the worker if one isn't currently running
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process())

        return await future

    async def _process(self):
        """
        Background worker that consumes the queue.
        Exits when the queue is empty.
        """
        try:
            while not self._queue.empty():
                func, args, kwargs, future = await self._queue.get()

                try:
                    result = func(*args, **kwargs)
                    if not future.done():
                        future.set_result(result)
                except Exception as e:
                    logger.error(f"❌ State update failed: {e}", exc_info=True)
                    if not future.done():
                        future.set_exception(e)
                finally:
                    self._queue.task_done()

        except asyncio.CancelledError:
            logger.warning("⚠️ Update queue worker cancelled")
            raise
        finally:
            self._worker = None
