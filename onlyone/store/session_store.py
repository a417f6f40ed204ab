"""
Session Store
-------------
Process-wide identity state with a single-writer API:
initialize / set_user / set_anonymous / logout.

Readers get `user`, `is_authenticated`, `is_loading` and may subscribe to changes.
`is_authenticated` is derived from `user`, so the two can never disagree.
"""
from __future__ import annotations

from typing import Callable, List, Optional

from onlyone.api.schemas import Identity, Profile
from onlyone.observability.logging import log
from onlyone.store import auth_repo
from onlyone.store.models import SessionUser, anonymous_user

Listener = Callable[["SessionStore"], None]


def user_from_profile(identity: Identity, profile: Profile, *, email: Optional[str] = None,
                      phone: Optional[str] = None) -> SessionUser:
    return SessionUser(
        id=identity.id,
        firstName=profile.first_name or "",
        lastName=profile.last_name or "",
        username=profile.username or "user",
        email=email if email is not None else identity.email,
        phone=phone if phone is not None else identity.phone,
        avatarUrl=profile.avatar_url,
        isAnonymous=False,
    )


class SessionStore:
    def __init__(self, gateway=None):
        self._gateway = gateway
        self._user: Optional[SessionUser] = None
        self._is_loading = True
        self._initialized = False
        self._listeners: List[Listener] = []

    # ---- readers -------------------------------------------------------
    @property
    def user(self) -> Optional[SessionUser]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set(self, user: Optional[SessionUser]) -> None:
        self._user = user
        self._is_loading = False
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                log(event="session_listener_error", errorType=type(e).__name__, error=str(e)[:200])

    # ---- writers -------------------------------------------------------
    async def initialize(self) -> None:
        """Restore a persisted session once per process. Later calls are no-ops."""
        if self._initialized:
            return
        self._initialized = True
        log(event="auth_initialize_start")
        try:
            user = await self._restore()
        except Exception as e:
            log(event="auth_initialize_error", errorType=type(e).__name__, error=str(e)[:300])
            user = None
        self._set(user)

    async def _restore(self) -> Optional[SessionUser]:
        persisted = auth_repo.load_auth_session()
        if persisted is None:
            log(event="auth_no_session")
            return None
        if self._gateway is None:
            return None

        if auth_repo.is_expired(persisted):
            res = await self._gateway.refresh_session(persisted.refresh_token)
            if res.error is not None:
                log(event="auth_refresh_failed", errorCode=res.error.code, status=res.error.status)
                auth_repo.clear_auth_session()
                return None
            persisted = res.data
        else:
            self._gateway.adopt_session(persisted)

        res = await self._gateway.fetch_profile(persisted.user.id)
        if res.error is not None or res.data is None:
            log(event="auth_profile_missing", userId=persisted.user.id,
                errorCode=(res.error.code if res.error else None))
            return None

        log(event="auth_session_restored", userId=persisted.user.id, username=res.data.username)
        return user_from_profile(persisted.user, res.data)

    def set_user(self, user: SessionUser) -> None:
        self._set(user)

    def set_anonymous(self) -> None:
        self._set(anonymous_user())

    async def logout(self) -> bool:
        """
        Sign out remotely and clear local state.
        Local state is cleared even if the remote call fails; returns False in that case.
        """
        remote_ok = True
        if self._gateway is not None:
            try:
                res = await self._gateway.sign_out()
                if res.error is not None:
                    remote_ok = False
                    log(event="logout_remote_failed", errorCode=res.error.code, status=res.error.status)
            except Exception as e:
                remote_ok = False
                log(event="logout_error", errorType=type(e).__name__, error=str(e)[:300])
        self._set(None)
        return remote_ok
