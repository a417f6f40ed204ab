"""
OTP Challenge Controller
------------------------
Owns one 6-digit verification challenge: code request, digit entry with
auto-submit, countdown-gated resend, and verification with its branches:

  signup path (pending profile supplied)
    verify ok -> create profile -> session
                 duplicate username -> sign out, back to username stage
                 other profile error -> warning, session anyway
  login path
    verify ok -> fetch profile -> session
                 no profile -> sign out, offer "Create Account" / "Try Different ..."
  verify rejected -> "Invalid Code", digits kept for correction

This is the boundary between backend error shapes and human text: every
remote failure ends as a Notice plus a state change, nothing propagates.
After close() the controller stops mutating its own state (no updates on a
torn-down view); session-level effects that already started still complete.
"""
from __future__ import annotations

from typing import Optional

from onlyone.api.gateway import is_uniqueness_violation
from onlyone.api.schemas import Identity
from onlyone.core import state_machine as sm
from onlyone.core.errors import (
    MissingProfileError,
    Notice,
    RemoteCallError,
    ResendError,
    UniquenessConflictError,
)
from onlyone.observability.logging import log
from onlyone.settings import settings
from onlyone.store.models import OtpChallenge, PendingSignup, SessionUser
from onlyone.store.session_store import user_from_profile
from onlyone.utils.tasks import TaskHandle, start_interval

INVALID_CODE = Notice(
    "Invalid Code",
    "The code you entered is incorrect or has expired. Please try again.",
)
USERNAME_TAKEN_NOTICE = Notice(
    "Username Already Taken",
    "This username was taken while you were signing up. Please go back and choose a different username.",
    choices=("Go Back",),
)
PROFILE_WARNING = Notice(
    "Profile Creation Warning",
    "Your account was created, but there was an issue saving your profile. "
    "You may need to complete your profile later.",
    choices=("OK",),
)
VERIFY_FAILED = Notice("Verification Failed", "Failed to verify code. Please try again.")


class OtpChallengeController:
    def __init__(
        self,
        gateway,
        store,
        target: str,
        pending: Optional[PendingSignup] = None,
        *,
        flow=None,
        tick_sec: float = 1.0,
    ):
        self._gateway = gateway
        self._store = store
        self._flow = flow
        self._tick_sec = tick_sec
        self.pending = pending
        self.length = int(settings.OTP_LENGTH)
        self.challenge = OtpChallenge(
            target=target,
            digits=[""] * self.length,
            secondsRemaining=int(settings.OTP_RESEND_SECONDS),
        )
        self.notice: Optional[Notice] = None
        self.last_error: Optional[RemoteCallError] = None
        self.outcome: Optional[str] = None
        self.code_sent = False
        self.is_loading = False
        self.is_resending = False
        self._countdown: Optional[TaskHandle] = None
        self._closed = False
        self._identity: Optional[Identity] = None

    # ------------------------------------------------------------------
    @property
    def target(self) -> str:
        return self.challenge.target

    @property
    def is_signup(self) -> bool:
        return self.pending is not None and self.pending.has_profile()

    @property
    def method(self) -> str:
        if self.pending is not None and self.pending.contactMethod in sm.CONTACT_METHODS:
            return self.pending.contactMethod
        return sm.METHOD_EMAIL if "@" in self.target else sm.METHOD_PHONE

    @property
    def resend_available(self) -> bool:
        return self.challenge.secondsRemaining == 0 and not self.is_resending and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # code request / countdown
    # ------------------------------------------------------------------
    async def request_code(self) -> bool:
        """
        Send a code to the target. On success the challenge is reset (digits empty,
        countdown restarted); on failure nothing changes and a retry prompt is shown.
        """
        if self._closed:
            return False
        fields = self.pending.profile_fields() if self.is_signup else None
        log(event="otp_code_requested", target=self.target, signup=bool(fields))

        self.is_resending = True
        try:
            res = await self._gateway.send_code(self.target, fields)
            error = res.error
        except Exception as e:
            error = e
        finally:
            self.is_resending = False

        if self._closed:
            return False

        if error is not None:
            err = ResendError.from_remote(error)
            self.last_error = err
            log(event="otp_code_request_failed", target=self.target,
                errorCode=err.code, status=err.status, error=err.message[:300])
            self.notice = Notice(
                "Failed to Send Code",
                "We couldn't send a verification code. Please try again.",
                choices=("Try Again",),
            )
            return False

        self._reset_challenge()
        self._start_countdown()
        self.code_sent = True
        log(event="otp_code_sent", target=self.target)
        return True

    def _reset_challenge(self) -> None:
        # Old countdown is stopped before the new challenge state exists
        self._stop_countdown()
        self.challenge.digits = [""] * self.length
        self.challenge.secondsRemaining = int(settings.OTP_RESEND_SECONDS)
        self.challenge.status = sm.OTP_ENTERING
        self.challenge.focusedIndex = 0
        self.last_error = None

    def _start_countdown(self) -> None:
        self._countdown = start_interval(self.tick, self._tick_sec)

    def _stop_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def tick(self) -> bool:
        """One countdown step. Returns False once there is nothing left to count."""
        if self._closed:
            return False
        if self.challenge.secondsRemaining > 0:
            self.challenge.secondsRemaining -= 1
        return self.challenge.secondsRemaining > 0

    async def resend(self) -> bool:
        if not self.resend_available:
            return False
        ok = await self.request_code()
        if ok:
            where = "email" if self.method == sm.METHOD_EMAIL else "phone"
            self.notice = Notice("Code Sent", f"A new verification code has been sent to your {where}.")
        return ok

    # ------------------------------------------------------------------
    # digit entry
    # ------------------------------------------------------------------
    async def enter_digit(self, position: int, value: str) -> Optional[str]:
        """
        Set one position. Multi-character input is ignored. Filling the last
        position while every other one is set submits the whole code and
        returns the verification outcome.
        """
        if self._closed or self.challenge.status in (sm.OTP_SUBMITTING, sm.OTP_VERIFIED):
            return None
        if not 0 <= position < self.length:
            return None
        value = value or ""
        if len(value) > 1:
            return None

        self.challenge.digits[position] = value
        last = self.length - 1
        if value and position < last:
            self.challenge.focusedIndex = position + 1
        if position == last and all(self.challenge.digits):
            return await self.verify(self.challenge.code)
        return None

    def backspace(self, position: int) -> None:
        if self._closed or not 0 <= position < self.length:
            return
        if not self.challenge.digits[position] and position > 0:
            self.challenge.focusedIndex = position - 1

    # ------------------------------------------------------------------
    # verification
    # ------------------------------------------------------------------
    async def verify(self, code: str) -> Optional[str]:
        if self._closed:
            return None
        self.challenge.status = sm.OTP_SUBMITTING
        self.is_loading = True
        self.notice = None
        self._identity = None
        try:
            outcome, notice, status = await self._verify(code)
        except Exception as e:
            log(event="otp_verify_exception", target=self.target,
                errorType=type(e).__name__, error=str(e)[:300])
            outcome, notice, status = sm.FAILED, VERIFY_FAILED, sm.OTP_REJECTED
            if self._identity is not None:
                # A session already exists for this identity; drop it
                await self._store.logout()

        if self._closed:
            return outcome

        self.is_loading = False
        self.challenge.status = status
        self.notice = notice
        self.outcome = outcome
        if outcome in (sm.VERIFIED, sm.USERNAME_TAKEN):
            # Challenge is over either way; nothing left to count down
            self._stop_countdown()
        if self._flow is not None:
            if outcome == sm.VERIFIED:
                self._flow.commit()
            elif outcome == sm.USERNAME_TAKEN:
                self._flow.return_to_username()
        return outcome

    async def _verify(self, code: str):
        log(event="otp_verify_attempt", target=self.target, code=code, signup=self.is_signup)
        res = await self._gateway.verify_code(self.target, code)
        if res.error is not None or res.data is None:
            err = RemoteCallError.from_remote(res.error) if res.error else RemoteCallError("no identity")
            self.last_error = err
            log(event="otp_verify_rejected", target=self.target, errorCode=err.code, status=err.status)
            # Digits are kept so a typo can be corrected in place
            return sm.REJECTED, INVALID_CODE, sm.OTP_REJECTED

        identity = self._identity = res.data
        log(event="otp_verified", userId=identity.id)

        if self.is_signup:
            return await self._complete_signup(identity)
        return await self._complete_login(identity)

    async def _complete_signup(self, identity):
        p = self.pending
        warning: Optional[Notice] = None

        pres = await self._gateway.create_profile(
            identity.id, p.username, p.firstName, p.lastName, p.dateOfBirth
        )
        if pres.error is not None:
            if is_uniqueness_violation(pres.error):
                err = UniquenessConflictError.from_remote(pres.error)
                self.last_error = err
                log(event="profile_username_conflict", userId=identity.id, username=p.username,
                    errorCode=err.code)
                # The identity was just created; do not leave it signed in without a profile
                await self._store.logout()
                return sm.USERNAME_TAKEN, USERNAME_TAKEN_NOTICE, sm.OTP_REJECTED

            # Auth record exists regardless; warn and continue
            log(event="profile_create_failed", userId=identity.id,
                errorCode=pres.error.code, error=(pres.error.message or "")[:300])
            warning = PROFILE_WARNING
        else:
            log(event="profile_created", userId=identity.id, username=p.username)

        if p.password:
            pw = await self._gateway.update_password(p.password)
            if pw.error is not None:
                log(event="password_update_failed", userId=identity.id, errorCode=pw.error.code)
                warning = warning or Notice(
                    "Password Not Saved",
                    "Your account was created, but your password could not be saved. "
                    "You can keep signing in with a verification code.",
                    choices=("OK",),
                )

        email = self.target if self.method == sm.METHOD_EMAIL else None
        phone = self.target if self.method == sm.METHOD_PHONE else None
        self._store.set_user(SessionUser(
            id=identity.id,
            firstName=p.firstName,
            lastName=p.lastName,
            username=p.username,
            email=email,
            phone=phone,
            isAnonymous=False,
        ))
        return sm.VERIFIED, warning, sm.OTP_VERIFIED

    async def _complete_login(self, identity):
        pres = await self._gateway.fetch_profile(identity.id)
        if pres.error is not None:
            log(event="profile_fetch_failed", userId=identity.id, errorCode=pres.error.code)
            await self._store.logout()
            return sm.FAILED, VERIFY_FAILED, sm.OTP_REJECTED

        if pres.data is None:
            self.last_error = MissingProfileError("profile not found")
            log(event="profile_missing_after_verify", userId=identity.id)
            await self._store.logout()
            noun = "email" if self.method == sm.METHOD_EMAIL else "phone number"
            retry = "Try Different Email" if self.method == sm.METHOD_EMAIL else "Try Different Phone Number"
            notice = Notice(
                "Account Not Found",
                f"No account found with this {noun}. It looks like you're trying to log in, "
                "but you need to create an account first.",
                choices=("Create Account", retry),
            )
            return sm.ACCOUNT_NOT_FOUND, notice, sm.OTP_REJECTED

        email = self.target if self.method == sm.METHOD_EMAIL else None
        phone = self.target if self.method == sm.METHOD_PHONE else None
        self._store.set_user(user_from_profile(identity, pres.data, email=email, phone=phone))
        log(event="login_completed", userId=identity.id)
        return sm.VERIFIED, None, sm.OTP_VERIFIED

    # ------------------------------------------------------------------
    def close(self) -> None:
        """Teardown: stop the countdown and ignore any late results."""
        self._closed = True
        self._stop_countdown()
