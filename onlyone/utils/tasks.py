import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

Callback = Callable[[], Union[None, bool, Awaitable[Optional[bool]]]]


class TaskHandle:
    """
    Cancellable handle around one asyncio task.
    start_* returns it; owners keep it and call cancel() on success and on teardown.
    """

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def task(self) -> asyncio.Task:
        return self._task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the task to finish; cancellation counts as finished."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


async def _call(cb: Callback):
    out = cb()
    if inspect.isawaitable(out):
        out = await out
    return out


def start_interval(callback: Callback, interval_sec: float) -> TaskHandle:
    """
    Run callback every interval_sec (first call after one interval).
    The loop stops when callback returns False or the handle is cancelled.
    Ticks never overlap: the next interval starts after the previous call returns.
    """

    async def _runner():
        while True:
            await asyncio.sleep(interval_sec)
            if await _call(callback) is False:
                return

    return TaskHandle(asyncio.get_running_loop().create_task(_runner()))


def start_later(callback: Callback, delay_sec: float) -> TaskHandle:
    async def _runner():
        await asyncio.sleep(delay_sec)
        await _call(callback)

    return TaskHandle(asyncio.get_running_loop().create_task(_runner()))
