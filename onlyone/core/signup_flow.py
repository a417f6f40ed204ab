"""
Staged signup / login flow.

Signup: CHOOSE_METHOD -> ENTER_CONTACT -> ENTER_PERSONAL_DETAILS
        [-> ENTER_CREDENTIALS] -> AWAITING_OTP -> COMMITTED
Login:  CHOOSE_METHOD -> ENTER_CONTACT -> AWAITING_OTP -> COMMITTED

The stage functions below are pure: they take the PendingSignup accumulator and
return an updated copy, or raise ValidationError. Nothing reaches the server
before AWAITING_OTP except the username availability lookup.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Optional, Tuple

from onlyone.core import state_machine as sm
from onlyone.core.errors import ValidationError
from onlyone.core.otp_controller import OtpChallengeController
from onlyone.core.username_check import UsernameAvailabilityChecker
from onlyone.core.validation import (
    validate_contact,
    validate_date_of_birth,
    validate_name,
    validate_password,
    validate_username_format,
)
from onlyone.observability.logging import log
from onlyone.store.models import PendingSignup


# ----------------------------------------------------------------------
# stage functions
# ----------------------------------------------------------------------
def choose_method(pending: PendingSignup, method: str) -> PendingSignup:
    if method not in sm.CONTACT_METHODS:
        raise ValidationError("contactMethod", "Choose phone or email")
    # Switching method always clears whatever was typed for the old one
    return replace(pending, contactMethod=method, contactValue="")


def submit_contact(pending: PendingSignup, value: str, *, strict_email: bool = False) -> PendingSignup:
    value = validate_contact(pending.contactMethod, value, strict_email=strict_email)
    return replace(pending, contactValue=value)


def submit_personal_details(
    pending: PendingSignup,
    first_name: str,
    last_name: str,
    username: str,
    date_of_birth: Optional[str] = None,
    checker: Optional[UsernameAvailabilityChecker] = None,
) -> PendingSignup:
    first = validate_name("firstName", first_name, "First name")
    last = validate_name("lastName", last_name, "Last name")
    dob = validate_date_of_birth(date_of_birth)
    normalized = validate_username_format(username)
    if checker is not None:
        blocked = checker.blocking_error(normalized)
        if blocked is not None:
            raise blocked
    return replace(pending, firstName=first, lastName=last, username=normalized, dateOfBirth=dob)


def submit_credentials(pending: PendingSignup, password: str, confirm: str) -> PendingSignup:
    return replace(pending, password=validate_password(password, confirm))


# ----------------------------------------------------------------------
# flow driver
# ----------------------------------------------------------------------
class StagedSignupFlow:
    def __init__(
        self,
        gateway,
        store,
        *,
        mode: str = sm.MODE_SIGNUP,
        collect_credentials: bool = False,
        checker: Optional[UsernameAvailabilityChecker] = None,
    ):
        if mode not in (sm.MODE_SIGNUP, sm.MODE_LOGIN):
            raise ValueError(f"unknown flow mode: {mode}")
        self._gateway = gateway
        self._store = store
        self.mode = mode
        self.collect_credentials = bool(collect_credentials) and mode == sm.MODE_SIGNUP
        self.checker = checker or UsernameAvailabilityChecker(gateway.username_taken)
        self.stage = sm.CHOOSE_METHOD
        self.pending = PendingSignup()
        self.errors: Dict[str, str] = {}
        self.otp: Optional[OtpChallengeController] = None

    @property
    def stages(self) -> Tuple[str, ...]:
        if self.mode == sm.MODE_LOGIN:
            return sm.LOGIN_STAGES
        if self.collect_credentials:
            return sm.SIGNUP_STAGES
        return tuple(s for s in sm.SIGNUP_STAGES if s != sm.ENTER_CREDENTIALS)

    @property
    def committed(self) -> bool:
        return self.stage == sm.COMMITTED

    def _next(self) -> str:
        order = self.stages
        return order[order.index(self.stage) + 1]

    def _previous(self) -> Optional[str]:
        order = self.stages
        idx = order.index(self.stage)
        return order[idx - 1] if idx > 0 else None

    def _require(self, *stages: str) -> None:
        if self.stage not in stages:
            raise RuntimeError(f"flow is in {self.stage}, expected one of {stages}")

    def _advance(self, pending: PendingSignup) -> bool:
        self.pending = pending
        self.errors = {}
        previous = self.stage
        self.stage = self._next()
        log(event="signup_stage_advanced", mode=self.mode, fromStage=previous, toStage=self.stage)
        return True

    def _reject(self, err: ValidationError) -> bool:
        self.errors = {err.field: err.message}
        return False

    # ---- stage transitions ---------------------------------------------
    def choose_method(self, method: str) -> bool:
        self._require(sm.CHOOSE_METHOD, sm.ENTER_CONTACT)
        try:
            pending = choose_method(self.pending, method)
        except ValidationError as e:
            return self._reject(e)
        self.pending = pending
        self.errors = {}
        self.stage = sm.ENTER_CONTACT
        return True

    def submit_contact(self, value: str) -> bool:
        self._require(sm.ENTER_CONTACT)
        try:
            pending = submit_contact(self.pending, value, strict_email=self.mode == sm.MODE_LOGIN)
        except ValidationError as e:
            return self._reject(e)
        return self._advance(pending)

    def on_username_input(self, raw: str) -> str:
        return self.checker.on_input(raw)

    def submit_personal_details(
        self,
        first_name: str,
        last_name: str,
        username: str,
        date_of_birth: Optional[str] = None,
    ) -> bool:
        self._require(sm.ENTER_PERSONAL_DETAILS)
        try:
            pending = submit_personal_details(
                self.pending, first_name, last_name, username, date_of_birth, checker=self.checker
            )
        except ValidationError as e:
            return self._reject(e)
        return self._advance(pending)

    def submit_credentials(self, password: str, confirm: str) -> bool:
        self._require(sm.ENTER_CREDENTIALS)
        try:
            pending = submit_credentials(self.pending, password, confirm)
        except ValidationError as e:
            return self._reject(e)
        return self._advance(pending)

    async def start_verification(self) -> bool:
        """
        Request the code for the accumulated contact. Calling again retries a failed
        request; once a code went out it is a resend and obeys the countdown.
        """
        self._require(sm.AWAITING_OTP)
        if self.otp is None or self.otp.closed:
            pending = self.pending if self.mode == sm.MODE_SIGNUP else None
            self.otp = OtpChallengeController(
                self._gateway, self._store, self.pending.contactValue, pending, flow=self
            )
        if self.otp.code_sent:
            return await self.otp.resend()
        return await self.otp.request_code()

    def back(self) -> bool:
        """One stage back, no network. Data entered in the stage being left is dropped."""
        if self.stage in (sm.CHOOSE_METHOD, sm.COMMITTED):
            return False
        leaving = self.stage
        self._discard(leaving)
        self.stage = self._previous()
        self.errors = {}
        log(event="signup_stage_back", mode=self.mode, fromStage=leaving, toStage=self.stage)
        return True

    def _discard(self, stage: str) -> None:
        p = self.pending
        if stage == sm.ENTER_CONTACT:
            self.pending = replace(p, contactValue="")
        elif stage == sm.ENTER_PERSONAL_DETAILS:
            self.pending = replace(p, firstName="", lastName="", username="", dateOfBirth=None)
            self.checker.on_input("")
        elif stage == sm.ENTER_CREDENTIALS:
            self.pending = replace(p, password=None)
        elif stage == sm.AWAITING_OTP:
            self._drop_otp()

    def _drop_otp(self) -> None:
        if self.otp is not None:
            self.otp.close()
            self.otp = None

    def continue_as_guest(self) -> bool:
        if self.stage in (sm.AWAITING_OTP, sm.COMMITTED):
            return False
        self._store.set_anonymous()
        self.pending = PendingSignup()
        self.stage = sm.COMMITTED
        log(event="signup_guest_continue")
        return True

    # ---- hooks called by the OTP controller -----------------------------
    def commit(self) -> None:
        # Irreversible; the accumulated form data is consumed
        self._drop_otp()
        self.pending = PendingSignup()
        self.errors = {}
        self.stage = sm.COMMITTED
        log(event="signup_committed", mode=self.mode)

    def return_to_username(self) -> None:
        username = self.pending.username
        self._drop_otp()
        self.pending = replace(self.pending, password=None)
        self.checker.mark_taken(username)
        self.stage = sm.USERNAME_STAGE
        self.errors = {"username": "Username is already taken"}
        log(event="signup_returned_to_username", username=username)

    def close(self) -> None:
        self.checker.close()
        self._drop_otp()
