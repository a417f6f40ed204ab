"""
Persisted auth session (access/refresh tokens + identity).

Written by the gateway when the identity provider issues or refreshes a session,
cleared on sign-out, read once by the session store at startup.
"""
import json
import time
from typing import Optional

from pydantic import ValidationError as SchemaError

from onlyone.api.schemas import AuthSession
from onlyone.observability.logging import log
from onlyone.settings import settings
from onlyone.store.redis_conn import get_redis

PREFIX = "auth:"


def _key() -> str:
    return f"{PREFIX}{settings.AUTH_STORAGE_KEY}"


def load_auth_session() -> Optional[AuthSession]:
    r = get_redis()
    raw = r.get(_key())
    if not raw:
        return None
    try:
        return AuthSession.model_validate(json.loads(raw))
    except (ValueError, SchemaError) as e:
        # Unreadable record: drop it so the next start is clean
        log(event="auth_session_corrupt", error=str(e)[:200])
        r.delete(_key())
        return None


def save_auth_session(session: AuthSession) -> None:
    r = get_redis()
    r.set(_key(), session.model_dump_json())


def clear_auth_session() -> None:
    r = get_redis()
    r.delete(_key())


def is_expired(session: AuthSession, *, skew_sec: int = 30) -> bool:
    if not session.expires_at:
        return False
    return int(time.time()) + skew_sec >= int(session.expires_at)
