"""
Error taxonomy for the signup/verification flow and the result poller.

None of these escape the controllers: each async boundary converts them into a
Notice (human-readable text) plus a state change, and logs the original error.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple


class ValidationError(Exception):
    """Local field error. Shown inline next to the field, never logged as a failure."""

    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field = field_name
        self.message = message


class AvailabilityPending(ValidationError):
    """Username lookup still in flight; blocks the stage like a validation error."""

    def __init__(self, field_name: str = "username", message: str = "Checking username..."):
        super().__init__(field_name, message)


class RemoteCallError(Exception):
    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @classmethod
    def from_remote(cls, err) -> "RemoteCallError":
        return cls(getattr(err, "message", "") or str(err),
                   code=getattr(err, "code", None),
                   status=getattr(err, "status", None))


class UniquenessConflictError(RemoteCallError):
    """Profile insert lost the race for a username between check and commit."""


class MissingProfileError(RemoteCallError):
    """Identity verified but no profile row exists (signup never completed)."""


class ResendError(RemoteCallError):
    """Requesting (or re-requesting) a verification code failed."""


class PollTimeout(Exception):
    """Bounded wait exhausted. Informational, not a failed call."""

    def __init__(self, entity_id: str, attempts: int):
        super().__init__(f"result for {entity_id} not ready after {attempts} attempts")
        self.entity_id = entity_id
        self.attempts = attempts


@dataclass(frozen=True)
class Notice:
    title: str
    message: str
    choices: Tuple[str, ...] = field(default_factory=tuple)
    persistent: bool = False
