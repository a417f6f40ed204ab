"""
Debounced username availability check.

idle -> checking -> available | taken

Each keystroke cancels the pending lookup and bumps a generation counter; a
lookup that completes under an old generation is discarded, so a slow reply
for "jan" can never overwrite the status for "jane".
"""
from typing import Awaitable, Callable, Optional

from onlyone.api.schemas import GatewayResult
from onlyone.core import state_machine as sm
from onlyone.core.errors import AvailabilityPending, ValidationError
from onlyone.core.validation import normalize_username
from onlyone.observability.logging import log
from onlyone.settings import settings
from onlyone.utils.tasks import TaskHandle, start_later

Lookup = Callable[[str], Awaitable[GatewayResult]]


class UsernameAvailabilityChecker:
    def __init__(self, lookup: Lookup, *, debounce_sec: Optional[float] = None):
        self._lookup = lookup
        self._debounce = settings.USERNAME_CHECK_DEBOUNCE_SEC if debounce_sec is None else float(debounce_sec)
        self._generation = 0
        self._pending: Optional[TaskHandle] = None
        self.username = ""
        self.status = sm.USERNAME_IDLE
        self.error = ""

    def on_input(self, raw: str) -> str:
        """Feed the text field value; returns the normalized username to display."""
        cleaned = normalize_username(raw)
        self.username = cleaned
        self.error = ""
        self._cancel_pending()
        self._generation += 1

        if len(cleaned) < settings.USERNAME_MIN_LENGTH:
            self.status = sm.USERNAME_IDLE
            return cleaned

        self.status = sm.USERNAME_CHECKING
        generation = self._generation
        self._pending = start_later(lambda: self._check(cleaned, generation), self._debounce)
        return cleaned

    async def _check(self, username: str, generation: int) -> None:
        try:
            res = await self._lookup(username)
        except Exception as e:
            res = None
            log(event="username_check_exception", username=username,
                errorType=type(e).__name__, error=str(e)[:200])

        if generation != self._generation:
            return

        if res is None or res.error is not None:
            if res is not None:
                log(event="username_check_failed", username=username, errorCode=res.error.code)
            self.status = sm.USERNAME_IDLE
            self.error = "Could not check username. Please try again."
            return

        taken = bool(res.data)
        log(event="username_checked", username=username, taken=taken)
        self.status = sm.USERNAME_TAKEN_STATUS if taken else sm.USERNAME_AVAILABLE

    def blocking_error(self, username: str) -> Optional[ValidationError]:
        """
        None only when `username` is the value last checked and it came back available.
        checking and taken block exactly like a validation failure.
        """
        if username != self.username or self.status == sm.USERNAME_CHECKING:
            return AvailabilityPending()
        if self.status == sm.USERNAME_TAKEN_STATUS:
            return ValidationError("username", "Username is already taken")
        if self.status == sm.USERNAME_IDLE:
            return ValidationError("username", self.error or "Username availability has not been confirmed")
        return None

    def mark_taken(self, username: str) -> None:
        """Record a conflict learned at commit time (lost race on profile insert)."""
        self._cancel_pending()
        self._generation += 1
        self.username = username
        self.status = sm.USERNAME_TAKEN_STATUS
        self.error = ""

    async def settle(self) -> None:
        if self._pending is not None:
            await self._pending.wait()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def close(self) -> None:
        self._cancel_pending()
        self._generation += 1
