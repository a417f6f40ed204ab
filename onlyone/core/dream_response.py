"""
Dream submission and the response screen's interpretation wait.

submit_dream creates the dream; the interpretation is generated server-side
after the insert, so the returned post usually carries a placeholder. The
tracker owns the poll for that post while its screen is visible.
"""
from __future__ import annotations

from typing import Optional, Tuple

from onlyone.api.schemas import CreateDreamRequest, DreamPost, RemoteError
from onlyone.core import state_machine as sm
from onlyone.core.errors import Notice, RemoteCallError
from onlyone.core.placeholders import is_placeholder_dream
from onlyone.core.poller import AsyncResultPoller, PollHandle
from onlyone.observability.logging import log


class DreamResponseTracker:
    def __init__(self, gateway, dream: DreamPost, *, poller: Optional[AsyncResultPoller] = None):
        self._gateway = gateway
        self._poller = poller or AsyncResultPoller()
        self._dream = dream
        self._handle: Optional[PollHandle] = None

    @property
    def dream(self) -> DreamPost:
        return self._dream

    @property
    def handle(self) -> Optional[PollHandle]:
        return self._handle

    @property
    def has_interpretation(self) -> bool:
        return not is_placeholder_dream(self._dream)

    @property
    def is_polling(self) -> bool:
        return self._handle is not None and self._handle.active

    @property
    def timed_out(self) -> bool:
        return self._handle is not None and self._handle.result.outcome == sm.POLL_TIMED_OUT

    @property
    def notice(self) -> Optional[Notice]:
        return self._handle.notice if self._handle is not None else None

    def open(self) -> PollHandle:
        """Start (or restart) waiting for the interpretation. Needs a running event loop."""
        self._handle = self._poller.start(
            self._dream.id,
            self._dream,
            self._gateway.fetch_entity_by_id,
            is_placeholder_dream,
            on_update=self._on_update,
        )
        return self._handle

    def _on_update(self, handle: PollHandle) -> None:
        if handle is not self._handle:
            return
        if handle.result.outcome == sm.POLL_RESOLVED:
            self._dream = handle.result.current

    async def wait(self) -> Optional[DreamPost]:
        if self._handle is not None:
            await self._handle.wait()
        return self._dream

    def close(self) -> None:
        if self._handle is not None:
            self._poller.cancel(self._dream.id)
            self._handle.cancel()


async def submit_dream(
    gateway,
    request: CreateDreamRequest,
    *,
    poller: Optional[AsyncResultPoller] = None,
) -> Tuple[Optional[DreamResponseTracker], Optional[RemoteCallError]]:
    """
    Create a dream and open a tracker for its interpretation.
    Returns (tracker, None) on success, (None, error) otherwise.
    """
    log(event="dream_submit", dreamType=request.dreamType, scope=request.scope, clarity=request.clarity)
    try:
        res = await gateway.create_entity(request)
        error, dream = res.error, res.data
    except Exception as e:
        log(event="dream_submit_exception", errorType=type(e).__name__, error=str(e)[:300])
        error, dream = RemoteError(message="Failed to create dream"), None
    if error is not None or dream is None:
        err = RemoteCallError.from_remote(error) if error else RemoteCallError("Failed to create dream")
        log(event="dream_submit_failed", errorCode=err.code, status=err.status, error=err.message[:300])
        return None, err

    tracker = DreamResponseTracker(gateway, dream, poller=poller)
    tracker.open()
    log(event="dream_submitted", dreamId=dream.id, pending=tracker.is_polling)
    return tracker, None
