from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from onlyone.core import state_machine as sm

T = TypeVar("T")


@dataclass
class PendingSignup:
    # Accumulated registration data, nothing committed server-side until OTP verification
    contactMethod: str = "email"  # phone | email
    contactValue: str = ""
    firstName: str = ""
    lastName: str = ""
    username: str = ""  # always stored normalized
    dateOfBirth: Optional[str] = None
    # Only set when the credentials stage is enabled
    password: Optional[str] = None

    def profile_fields(self) -> dict:
        """Metadata sent along with the signup code request."""
        return {
            "first_name": self.firstName,
            "last_name": self.lastName,
            "username": self.username,
            "date_of_birth": self.dateOfBirth,
        }

    def has_profile(self) -> bool:
        return bool(self.firstName and self.lastName and self.username)


@dataclass
class OtpChallenge:
    target: str = ""
    digits: List[str] = field(default_factory=lambda: [""] * 6)
    secondsRemaining: int = 60
    status: str = sm.OTP_ENTERING  # entering/submitting/verified/rejected
    focusedIndex: int = 0

    @property
    def code(self) -> str:
        return "".join(self.digits)


@dataclass
class SessionUser:
    id: str
    firstName: str = ""
    lastName: str = ""
    username: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    avatarUrl: Optional[str] = None
    isAnonymous: bool = False


ANONYMOUS_USER_ID = "anonymous"


def anonymous_user() -> SessionUser:
    return SessionUser(
        id=ANONYMOUS_USER_ID,
        firstName="Guest",
        lastName="",
        username="anonymous",
        isAnonymous=True,
    )


@dataclass
class AsyncResult(Generic[T]):
    id: str
    current: Any = None
    isPlaceholder: bool = True
    attemptsMade: int = 0
    maxAttempts: int = 20
    outcome: str = sm.POLL_PENDING  # pending/resolved/timed_out
    fetches: int = 0

    @property
    def done(self) -> bool:
        return self.outcome != sm.POLL_PENDING
