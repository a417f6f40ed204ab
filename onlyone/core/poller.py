"""
Async Result Poller
-------------------
Polls for a server-computed value until it stops being a placeholder, with a
hard bound on the wait.

    start(id, initial, fetch, is_placeholder)
      initial genuine      -> resolved, nothing scheduled
      every interval       -> fetch(id)
        genuine            -> merge into current, resolved, stop
        placeholder/absent -> attemptsMade += 1
                              attemptsMade == maxAttempts -> timed_out, stop

A resolving fetch is not counted as an attempt: four placeholders followed by
a genuine value leave attemptsMade at 4 after five fetches. Fetch errors count
like an absent value, and so does a value the predicate or merge fails on.
The bound fires even if no call ever fails.

At most one poll is live per entity id. Starting another for the same id
cancels the first. A cancelled poll never touches its result again.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from onlyone.core import state_machine as sm
from onlyone.core.errors import Notice, PollTimeout
from onlyone.core.merge import merge_entity
from onlyone.observability.logging import log
from onlyone.settings import settings
from onlyone.store.models import AsyncResult
from onlyone.utils.tasks import TaskHandle, start_interval

Fetch = Callable[[str], Awaitable[Any]]
Predicate = Callable[[Any], bool]
Merge = Callable[[Any, Any], Any]
UpdateListener = Callable[["PollHandle"], None]

TIMEOUT_NOTICE = Notice(
    "Still Working",
    "This is taking longer than expected. It will appear here once ready.",
    persistent=True,
)


class PollFetchError(Exception):
    def __init__(self, error):
        super().__init__(getattr(error, "message", None) or str(error))
        self.code = getattr(error, "code", None)
        self.status = getattr(error, "status", None)


def _unwrap(res: Any) -> Any:
    # Gateway fetches return GatewayResult(data, error); plain callables may return the value
    if hasattr(res, "error") and hasattr(res, "data"):
        if res.error is not None:
            raise PollFetchError(res.error)
        return res.data
    return res


class PollHandle:
    def __init__(self, result: AsyncResult, on_update: Optional[UpdateListener] = None):
        self.result = result
        self.notice: Optional[Notice] = None
        self.error: Optional[PollTimeout] = None
        self._on_update = on_update
        self._task: Optional[TaskHandle] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return self._task is not None and self._task.active and not self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()

    async def wait(self) -> AsyncResult:
        if self._task is not None:
            await self._task.wait()
        return self.result

    def _notify(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self)
        except Exception as e:
            log(event="poll_listener_error", entityId=self.result.id,
                errorType=type(e).__name__, error=str(e)[:200])


class AsyncResultPoller:
    def __init__(self, interval_sec: Optional[float] = None, max_attempts: Optional[int] = None):
        self.interval_sec = float(settings.POLL_INTERVAL_SEC if interval_sec is None else interval_sec)
        self.max_attempts = int(settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts)
        self._active: Dict[str, PollHandle] = {}

    def active(self, entity_id: str) -> Optional[PollHandle]:
        handle = self._active.get(entity_id)
        if handle is not None and handle.active:
            return handle
        return None

    def start(
        self,
        entity_id: str,
        initial: Any,
        fetch: Fetch,
        is_placeholder: Predicate,
        on_update: Optional[UpdateListener] = None,
        merge: Merge = merge_entity,
    ) -> PollHandle:
        self.cancel(entity_id)

        result = AsyncResult(
            id=entity_id,
            current=initial,
            isPlaceholder=is_placeholder(initial),
            maxAttempts=self.max_attempts,
        )
        handle = PollHandle(result, on_update)

        if not result.isPlaceholder:
            result.outcome = sm.POLL_RESOLVED
            log(event="poll_not_needed", entityId=entity_id)
            return handle

        async def _tick() -> bool:
            return await self._attempt(handle, fetch, is_placeholder, merge)

        self._active[entity_id] = handle
        handle._task = start_interval(_tick, self.interval_sec)
        log(event="poll_started", entityId=entity_id,
            intervalSec=self.interval_sec, maxAttempts=self.max_attempts)
        return handle

    async def _attempt(self, handle: PollHandle, fetch: Fetch, is_placeholder: Predicate, merge: Merge) -> bool:
        """One poll step. Returns False when polling must stop."""
        result = handle.result
        if handle.cancelled or result.done:
            return False

        result.fetches += 1
        try:
            fetched = _unwrap(await fetch(result.id))
        except Exception as e:
            log(event="poll_fetch_failed", entityId=result.id, fetch=result.fetches,
                errorType=type(e).__name__, errorCode=getattr(e, "code", None), error=str(e)[:300])
            fetched = None

        # Torn down while the fetch was in flight
        if handle.cancelled:
            return False

        resolved, merged = False, None
        if fetched is not None:
            try:
                if not is_placeholder(fetched):
                    merged = merge(result.current, fetched)
                    resolved = True
            except Exception as e:
                # Counted as a placeholder so the attempt bound still holds
                log(event="poll_value_rejected", entityId=result.id, fetch=result.fetches,
                    errorType=type(e).__name__, error=str(e)[:300])

        if resolved:
            result.current = merged
            result.isPlaceholder = False
            result.outcome = sm.POLL_RESOLVED
            log(event="poll_resolved", entityId=result.id,
                fetches=result.fetches, attemptsMade=result.attemptsMade)
            self._finish(handle)
            return False

        result.attemptsMade += 1
        log(event="poll_placeholder", entityId=result.id,
            attempt=result.attemptsMade, maxAttempts=result.maxAttempts, absent=fetched is None)

        if result.attemptsMade >= result.maxAttempts:
            result.outcome = sm.POLL_TIMED_OUT
            handle.error = PollTimeout(result.id, result.attemptsMade)
            handle.notice = TIMEOUT_NOTICE
            log(event="poll_timed_out", level="warning", entityId=result.id, attempts=result.attemptsMade)
            self._finish(handle)
            return False

        handle._notify()
        return True

    def _finish(self, handle: PollHandle) -> None:
        if self._active.get(handle.result.id) is handle:
            del self._active[handle.result.id]
        handle._notify()

    def cancel(self, entity_id: str) -> bool:
        handle = self._active.pop(entity_id, None)
        if handle is None:
            return False
        handle.cancel()
        log(event="poll_cancelled", entityId=entity_id, attemptsMade=handle.result.attemptsMade)
        return True

    def cancel_all(self) -> None:
        for entity_id in list(self._active):
            self.cancel(entity_id)
