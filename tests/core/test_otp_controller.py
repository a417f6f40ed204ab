import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from onlyone.api.schemas import GatewayResult, Identity, Profile, RemoteError
from onlyone.core import state_machine as sm
from onlyone.core.otp_controller import (
    INVALID_CODE,
    PROFILE_WARNING,
    USERNAME_TAKEN_NOTICE,
    OtpChallengeController,
)
from onlyone.core.signup_flow import StagedSignupFlow
from onlyone.core.username_check import UsernameAvailabilityChecker
from onlyone.store.models import PendingSignup, SessionUser
from onlyone.store.session_store import SessionStore

PENDING = PendingSignup(
    contactMethod="email",
    contactValue="a@b.com",
    firstName="Jane",
    lastName="Doe",
    username="janedoe123",
)


def _gateway(**overrides):
    gw = MagicMock()
    gw.send_code = AsyncMock(return_value=GatewayResult())
    gw.verify_code = AsyncMock(return_value=GatewayResult(data=Identity(id="user-1", email="a@b.com")))
    gw.create_profile = AsyncMock(return_value=GatewayResult())
    gw.fetch_profile = AsyncMock(return_value=GatewayResult(data=Profile(
        id="user-1", username="janedoe123", first_name="Jane", last_name="Doe",
    )))
    gw.update_password = AsyncMock(return_value=GatewayResult())
    gw.sign_out = AsyncMock(return_value=GatewayResult())
    gw.username_taken = AsyncMock(return_value=GatewayResult(data=False))
    for name, value in overrides.items():
        setattr(gw, name, value)
    return gw


def _controller(gw, pending=PENDING, target="a@b.com"):
    store = SessionStore(gw)
    # Countdown is stepped by hand through tick()
    ctrl = OtpChallengeController(gw, store, target, pending, tick_sec=3600)
    return ctrl, store


async def _type(ctrl, code):
    outcome = None
    for i, ch in enumerate(code):
        outcome = await ctrl.enter_digit(i, ch)
    return outcome


def test_request_code_signup_sends_profile_fields():
    gw = _gateway()

    async def scenario():
        ctrl, _ = _controller(gw)
        ok = await ctrl.request_code()
        ctrl.close()
        return ok, ctrl

    ok, ctrl = asyncio.run(scenario())
    assert ok and ctrl.code_sent
    gw.send_code.assert_awaited_once_with("a@b.com", PENDING.profile_fields())
    assert ctrl.challenge.secondsRemaining == 60
    assert ctrl.challenge.digits == [""] * 6


def test_request_code_login_is_bare():
    gw = _gateway()

    async def scenario():
        ctrl, _ = _controller(gw, pending=None)
        await ctrl.request_code()
        ctrl.close()

    asyncio.run(scenario())
    gw.send_code.assert_awaited_once_with("a@b.com", None)


def test_request_code_failure_shows_retry_and_keeps_state():
    gw = _gateway(send_code=AsyncMock(return_value=GatewayResult(error=RemoteError(message="rate limited", status=429))))

    async def scenario():
        ctrl, _ = _controller(gw)
        ok = await ctrl.request_code()
        return ok, ctrl

    ok, ctrl = asyncio.run(scenario())
    assert not ok
    assert not ctrl.code_sent
    assert ctrl.notice.title == "Failed to Send Code"
    assert ctrl.notice.choices == ("Try Again",)
    assert ctrl.last_error.status == 429


def test_auto_submit_exactly_once_with_full_code():
    gw = _gateway()

    async def scenario():
        ctrl, store = _controller(gw)
        await ctrl.request_code()
        partial = [await ctrl.enter_digit(i, ch) for i, ch in enumerate("12345")]
        assert partial == [None] * 5
        gw.verify_code.assert_not_awaited()
        outcome = await ctrl.enter_digit(5, "6")
        # A late keystroke after success does not submit again
        await ctrl.enter_digit(5, "7")
        ctrl.close()
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.VERIFIED
    gw.verify_code.assert_awaited_once_with("a@b.com", "123456")
    assert ctrl.challenge.status == sm.OTP_VERIFIED


def test_no_second_submit_while_verifying():
    async def scenario():
        release = asyncio.Event()

        async def slow_verify(target, code):
            await release.wait()
            return GatewayResult(data=Identity(id="user-1", email="a@b.com"))

        gw = _gateway(verify_code=AsyncMock(side_effect=slow_verify))
        ctrl, _ = _controller(gw)
        for i, ch in enumerate("12345"):
            await ctrl.enter_digit(i, ch)
        first = asyncio.ensure_future(ctrl.enter_digit(5, "6"))
        await asyncio.sleep(0)
        assert ctrl.challenge.status == sm.OTP_SUBMITTING
        assert await ctrl.enter_digit(5, "6") is None
        release.set()
        outcome = await first
        ctrl.close()
        return gw, outcome

    gw, outcome = asyncio.run(scenario())
    assert outcome == sm.VERIFIED
    assert gw.verify_code.await_count == 1


def test_enter_digit_rejects_multi_character_and_moves_focus():
    async def scenario():
        ctrl, _ = _controller(_gateway())
        assert await ctrl.enter_digit(0, "12") is None
        assert ctrl.challenge.digits[0] == ""
        await ctrl.enter_digit(0, "1")
        assert ctrl.challenge.focusedIndex == 1
        ctrl.backspace(1)
        assert ctrl.challenge.focusedIndex == 0
        await ctrl.enter_digit(9, "1")
        return ctrl

    ctrl = asyncio.run(scenario())
    assert ctrl.challenge.digits == ["1", "", "", "", "", ""]


def test_resend_gated_by_countdown_then_resets():
    gw = _gateway()

    async def scenario():
        ctrl, _ = _controller(gw)
        await ctrl.request_code()
        for i, ch in enumerate("98765"):
            await ctrl.enter_digit(i, ch)

        assert not ctrl.resend_available
        assert await ctrl.resend() is False
        for _ in range(59):
            assert ctrl.tick() is True
            assert not ctrl.resend_available
        assert ctrl.tick() is False
        assert ctrl.challenge.secondsRemaining == 0
        assert ctrl.resend_available

        ok = await ctrl.resend()
        ctrl.close()
        return ok, ctrl

    ok, ctrl = asyncio.run(scenario())
    assert ok
    assert gw.send_code.await_count == 2
    assert ctrl.challenge.secondsRemaining == 60
    assert ctrl.challenge.digits == [""] * 6
    assert ctrl.challenge.focusedIndex == 0
    assert ctrl.notice.title == "Code Sent"


def test_rejected_code_keeps_digits():
    gw = _gateway(verify_code=AsyncMock(return_value=GatewayResult(
        error=RemoteError(message="Token has expired or is invalid", code="otp_expired", status=403)
    )))

    async def scenario():
        ctrl, store = _controller(gw)
        outcome = await _type(ctrl, "123456")
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.REJECTED
    assert ctrl.notice == INVALID_CODE
    assert ctrl.challenge.status == sm.OTP_REJECTED
    assert ctrl.challenge.code == "123456"
    assert not store.is_authenticated
    gw.create_profile.assert_not_awaited()


def test_signup_example_establishes_session():
    gw = _gateway()

    async def scenario():
        ctrl, store = _controller(gw)
        await ctrl.request_code()
        outcome = await _type(ctrl, "123456")
        ctrl.close()
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.VERIFIED
    gw.create_profile.assert_awaited_once_with("user-1", "janedoe123", "Jane", "Doe", None)
    user = store.user
    assert (user.firstName, user.lastName, user.username) == ("Jane", "Doe", "janedoe123")
    assert user.email == "a@b.com"
    assert user.isAnonymous is False
    assert store.is_authenticated
    assert ctrl.notice is None


def test_profile_failure_other_than_conflict_warns_and_continues():
    gw = _gateway(create_profile=AsyncMock(return_value=GatewayResult(
        error=RemoteError(message="permission denied for table profiles", code="42501", status=403)
    )))

    async def scenario():
        ctrl, store = _controller(gw)
        outcome = await _type(ctrl, "123456")
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.VERIFIED
    assert ctrl.notice == PROFILE_WARNING
    assert store.is_authenticated
    gw.sign_out.assert_not_awaited()


def test_password_applied_after_signup():
    gw = _gateway()
    pending = PendingSignup(**{**PENDING.__dict__, "password": "hunter22!"})

    async def scenario():
        ctrl, store = _controller(gw, pending=pending)
        return await _type(ctrl, "123456")

    assert asyncio.run(scenario()) == sm.VERIFIED
    gw.update_password.assert_awaited_once_with("hunter22!")


def test_uniqueness_conflict_signs_out_and_returns_to_username_stage():
    gw = _gateway(create_profile=AsyncMock(return_value=GatewayResult(
        error=RemoteError(message='duplicate key value violates unique constraint', code="23505", status=409)
    )))

    async def scenario():
        store = SessionStore(gw)
        checker = UsernameAvailabilityChecker(gw.username_taken, debounce_sec=0)
        flow = StagedSignupFlow(gw, store, checker=checker)
        flow.choose_method("email")
        flow.submit_contact("a@b.com")
        flow.on_username_input("janedoe123")
        await checker.settle()
        assert flow.submit_personal_details("Jane", "Doe", "janedoe123")
        assert await flow.start_verification()
        ctrl = flow.otp
        outcome = await _type(ctrl, "123456")
        return outcome, ctrl, flow, store

    outcome, ctrl, flow, store = asyncio.run(scenario())
    assert outcome == sm.USERNAME_TAKEN
    assert ctrl.notice == USERNAME_TAKEN_NOTICE
    gw.sign_out.assert_awaited_once()
    assert store.is_authenticated is False
    assert store.user is None
    assert flow.stage == sm.USERNAME_STAGE
    assert flow.stage != sm.COMMITTED
    assert flow.otp is None
    assert flow.errors == {"username": "Username is already taken"}
    # Same username stays blocked until a fresh availability check
    assert flow.submit_personal_details("Jane", "Doe", "janedoe123") is False
    assert flow.pending.contactValue == "a@b.com"


def test_login_without_profile_signs_out_and_offers_choice():
    gw = _gateway(fetch_profile=AsyncMock(return_value=GatewayResult()))

    async def scenario():
        ctrl, store = _controller(gw, pending=None)
        outcome = await _type(ctrl, "123456")
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.ACCOUNT_NOT_FOUND
    assert ctrl.notice.title == "Account Not Found"
    assert ctrl.notice.choices == ("Create Account", "Try Different Email")
    gw.sign_out.assert_awaited_once()
    assert not store.is_authenticated


def test_login_phone_account_not_found_wording():
    gw = _gateway(fetch_profile=AsyncMock(return_value=GatewayResult()))

    async def scenario():
        ctrl, _ = _controller(gw, pending=None, target="+15551234567")
        await _type(ctrl, "123456")
        return ctrl

    ctrl = asyncio.run(scenario())
    assert ctrl.notice.choices[1] == "Try Different Phone Number"


def test_login_with_profile_sets_user():
    gw = _gateway()

    async def scenario():
        ctrl, store = _controller(gw, pending=None)
        outcome = await _type(ctrl, "123456")
        return outcome, store

    outcome, store = asyncio.run(scenario())
    assert outcome == sm.VERIFIED
    assert store.user.username == "janedoe123"
    assert store.user.email == "a@b.com"
    gw.create_profile.assert_not_awaited()


def test_unexpected_exception_becomes_failed_notice():
    gw = _gateway(verify_code=AsyncMock(side_effect=RuntimeError("socket closed")))

    async def scenario():
        ctrl, _ = _controller(gw)
        return await _type(ctrl, "123456"), ctrl

    outcome, ctrl = asyncio.run(scenario())
    assert outcome == sm.FAILED
    assert ctrl.notice.title == "Verification Failed"
    assert ctrl.is_loading is False
    # Nothing was verified, so there is no session to drop
    gw.sign_out.assert_not_awaited()


@pytest.mark.parametrize("pending,overrides", [
    (PENDING, {"create_profile": AsyncMock(side_effect=ValueError("bad profile row"))}),
    (None, {"fetch_profile": AsyncMock(side_effect=ValueError("bad profile row"))}),
])
def test_failure_after_verified_code_signs_out(pending, overrides):
    gw = _gateway(**overrides)

    async def scenario():
        ctrl, store = _controller(gw, pending=pending)
        store.set_user(SessionUser(id="user-1"))
        outcome = await _type(ctrl, "123456")
        return outcome, ctrl, store

    outcome, ctrl, store = asyncio.run(scenario())
    assert outcome == sm.FAILED
    assert ctrl.notice.title == "Verification Failed"
    gw.sign_out.assert_awaited_once()
    assert not store.is_authenticated


def test_last_position_alone_does_not_submit():
    gw = _gateway()

    async def scenario():
        ctrl, _ = _controller(gw)
        first = await ctrl.enter_digit(5, "7")
        await ctrl.enter_digit(0, "1")
        second = await ctrl.enter_digit(5, "8")
        return first, second, ctrl

    first, second, ctrl = asyncio.run(scenario())
    assert first is None and second is None
    gw.verify_code.assert_not_awaited()
    assert ctrl.challenge.status == sm.OTP_ENTERING
    assert ctrl.challenge.digits == ["1", "", "", "", "", "8"]


def test_close_stops_countdown_and_ignores_late_result():
    async def scenario():
        release = asyncio.Event()

        async def slow_verify(target, code):
            await release.wait()
            return GatewayResult(error=RemoteError(message="invalid"))

        gw = _gateway(verify_code=AsyncMock(side_effect=slow_verify))
        ctrl, _ = _controller(gw)
        await ctrl.request_code()
        countdown = ctrl._countdown
        for i, ch in enumerate("12345"):
            await ctrl.enter_digit(i, ch)
        pending = asyncio.ensure_future(ctrl.enter_digit(5, "6"))
        await asyncio.sleep(0)

        ctrl.close()
        release.set()
        await pending
        await countdown.wait()
        return ctrl, countdown

    ctrl, countdown = asyncio.run(scenario())
    assert not countdown.active
    assert ctrl.tick() is False
    assert ctrl.notice is None
    assert ctrl.outcome is None
    assert ctrl.challenge.secondsRemaining == 60


@pytest.mark.parametrize("method,target,field", [
    ("email", "a@b.com", "email"),
    ("phone", "+15551234567", "phone"),
])
def test_signup_user_contact_field_follows_method(method, target, field):
    gw = _gateway()
    pending = PendingSignup(**{**PENDING.__dict__, "contactMethod": method, "contactValue": target})

    async def scenario():
        ctrl, store = _controller(gw, pending=pending, target=target)
        await _type(ctrl, "123456")
        return store

    store = asyncio.run(scenario())
    assert getattr(store.user, field) == target
