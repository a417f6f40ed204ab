"""
Remote Operation Gateway
------------------------
Thin async wrapper over the backend-as-a-service HTTP surface:
  - auth      {SUPABASE_URL}/auth/v1       (OTP, verify, logout, password, token refresh)
  - database  {SUPABASE_URL}/rest/v1       (profiles, dream_posts)
  - functions {SUPABASE_URL}/functions/v1  (create-dream-post, create-post)

Every public method returns GatewayResult(data, error). Transport exceptions and
non-2xx responses are normalized into RemoteError; nothing here raises for a
remote failure. Turning errors into human text is the caller's job.
"""
from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from onlyone.api.schemas import (
    AuthSession,
    CreateDreamRequest,
    CreatePostRequest,
    CreatedPost,
    DreamInterpretation,
    DreamPost,
    GatewayResult,
    Identity,
    Profile,
    RemoteError,
)
from onlyone.observability.logging import log
from onlyone.settings import settings
from onlyone.store import auth_repo

UNIQUE_VIOLATION_CODE = "23505"
NO_ROWS_CODE = "PGRST116"
INVALID_RESPONSE = "Invalid response from server"


def is_uniqueness_violation(error: Optional[RemoteError]) -> bool:
    if error is None:
        return False
    if (error.code or "") == UNIQUE_VIOLATION_CODE:
        return True
    msg = (error.message or "").lower()
    return "unique" in msg or "duplicate" in msg


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _error_from_response(resp: httpx.Response) -> RemoteError:
    message = ""
    code = None
    body = _json(resp)
    if isinstance(body, dict):
        message = str(
            body.get("msg")
            or body.get("message")
            or body.get("error_description")
            or body.get("error")
            or ""
        )
        raw_code = body.get("code") or body.get("error_code")
        code = str(raw_code) if raw_code is not None else None
    if not message:
        message = (resp.text or "")[:300] or f"HTTP {resp.status_code}"
    return RemoteError(message=message, code=code, status=resp.status_code)


def _function_error_message(err: RemoteError, fallback: str) -> str:
    """Map an edge-function failure to text that is safe to show."""
    status = err.status or 0
    if status >= 500:
        return "Server error. Please try again in a moment."
    if status in (401, 403):
        return "Authentication error. Please try logging in again."
    if status == 400:
        return err.message or "Invalid request. Please check your input."
    return err.message or fallback


def decode_interpretation(raw: Any) -> Optional[DreamInterpretation]:
    """
    Stored interpretations come back either as an object or as a JSON string.
    Legacy free-text interpretations are dropped; background generation replaces them.
    """
    if not raw:
        return None
    try:
        if isinstance(raw, str):
            if not raw.strip().startswith("{"):
                return None
            raw = json.loads(raw)
        if isinstance(raw, dict):
            return DreamInterpretation.model_validate(raw)
    except ValueError:
        return None
    return None


def dream_from_row(row: Dict[str, Any]) -> DreamPost:
    """dream_posts row (snake_case columns) -> DreamPost. Missing numbers read as 0."""
    return DreamPost(
        id=str(row.get("id")),
        content=row.get("content") or "",
        dream_type=row.get("dream_type"),
        clarity=int(row.get("clarity") or 0),
        interpretation=decode_interpretation(row.get("interpretation")),
        scope=row.get("scope"),
        location_city=row.get("location_city") or None,
        location_state=row.get("location_state") or None,
        location_country=row.get("location_country") or None,
        matchCount=int(row.get("match_count") or 0),
        totalInScope=int(row.get("total_in_scope") or 0),
        tier=row.get("tier") or "",
        percentile=float(row.get("percentile") or 0),
        created_at=row.get("created_at"),
    )


def _contact_field(target: str) -> str:
    return "email" if "@" in (target or "") else "phone"


def _parsed(event: str, build, raw: Any) -> GatewayResult:
    """Build a response model; a malformed body becomes a RemoteError."""
    try:
        return GatewayResult(data=build(raw))
    except (ValueError, TypeError) as e:
        log(event=event, errorType=type(e).__name__, error=str(e)[:300])
        return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))


class BackendGateway:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, *, persist_session: bool = True):
        self._client = client or httpx.AsyncClient(
            base_url=settings.SUPABASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SEC,
        )
        self._persist = persist_session
        self._session: Optional[AuthSession] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendGateway":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    def adopt_session(self, session: Optional[AuthSession]) -> None:
        self._session = session

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        bearer = token or (self._session.access_token if self._session else "") or settings.SUPABASE_ANON_KEY
        return {
            "apikey": settings.SUPABASE_ANON_KEY,
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
            "x-application-name": settings.APP_NAME_HEADER,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Tuple[Optional[httpx.Response], Optional[RemoteError]]:
        headers = self._headers(token)
        if extra_headers:
            headers.update(extra_headers)
        start = time.monotonic()
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log(
                event="gateway_transport_error",
                method=method,
                path=path,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )
            return None, RemoteError(message=str(e) or type(e).__name__, code="network_error")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if 200 <= resp.status_code < 300:
            log(event="gateway_request_ok", method=method, path=path,
                statusCode=resp.status_code, elapsedMs=elapsed_ms)
            return resp, None

        err = _error_from_response(resp)
        log(
            event="gateway_request_failed",
            method=method,
            path=path,
            statusCode=resp.status_code,
            elapsedMs=elapsed_ms,
            errorCode=err.code,
            responseText=(resp.text or "")[:500],
        )
        return resp, err

    def _store_session(self, session: AuthSession) -> None:
        self._session = session
        if self._persist:
            auth_repo.save_auth_session(session)

    @staticmethod
    def _session_from_body(body: Dict[str, Any]) -> Optional[AuthSession]:
        if not isinstance(body, dict) or not body.get("access_token") or not body.get("user"):
            return None
        try:
            expires_at = body.get("expires_at")
            if not expires_at and body.get("expires_in"):
                expires_at = int(time.time()) + int(body["expires_in"])
            return AuthSession(
                access_token=body["access_token"],
                refresh_token=body.get("refresh_token") or "",
                expires_at=expires_at,
                user=Identity.model_validate(body["user"]),
            )
        except (ValueError, TypeError) as e:
            log(event="session_response_invalid", errorType=type(e).__name__, error=str(e)[:300])
            return None

    # ------------------------------------------------------------------
    # identity provider
    # ------------------------------------------------------------------
    async def send_code(self, target: str, profile_fields: Optional[Dict[str, Any]] = None) -> GatewayResult:
        body: Dict[str, Any] = {_contact_field(target): target, "create_user": True}
        if profile_fields:
            # Signup path: pending profile fields travel as user metadata
            body["data"] = profile_fields
        _, err = await self._request("POST", "/auth/v1/otp", json=body)
        return GatewayResult(error=err)

    async def verify_code(self, target: str, code: str) -> GatewayResult:
        field_name = _contact_field(target)
        body = {
            field_name: target,
            "token": code,
            "type": "email" if field_name == "email" else "sms",
        }
        resp, err = await self._request("POST", "/auth/v1/verify", json=body)
        if err:
            return GatewayResult(error=err)
        session = self._session_from_body(_json(resp))
        if session is None:
            return GatewayResult(error=RemoteError(message="No user returned after OTP verification"))
        self._store_session(session)
        return GatewayResult(data=session.user)

    async def refresh_session(self, refresh_token: str) -> GatewayResult:
        resp, err = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            token=settings.SUPABASE_ANON_KEY,
        )
        if err:
            return GatewayResult(error=err)
        session = self._session_from_body(_json(resp))
        if session is None:
            return GatewayResult(error=RemoteError(message="Session refresh returned no session"))
        self._store_session(session)
        return GatewayResult(data=session)

    async def update_password(self, password: str) -> GatewayResult:
        _, err = await self._request("PUT", "/auth/v1/user", json={"password": password})
        return GatewayResult(error=err)

    async def sign_out(self) -> GatewayResult:
        err = None
        if self._session is not None:
            _, err = await self._request("POST", "/auth/v1/logout", token=self._session.access_token)
        # Local copy goes regardless; a stale token must not be restored on next start
        self._session = None
        if self._persist:
            auth_repo.clear_auth_session()
        return GatewayResult(error=err)

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------
    async def create_profile(
        self,
        user_id: str,
        username: str,
        first_name: str,
        last_name: str,
        date_of_birth: Optional[str] = None,
    ) -> GatewayResult:
        row = {
            "id": user_id,
            "username": (username or "").lower().strip(),
            "first_name": first_name,
            "last_name": last_name,
            "date_of_birth": date_of_birth or None,
            "signup_source": "mobile",
        }
        _, err = await self._request(
            "POST", "/rest/v1/profiles", json=row, extra_headers={"Prefer": "return=minimal"}
        )
        return GatewayResult(error=err)

    async def fetch_profile(self, user_id: str) -> GatewayResult:
        resp, err = await self._request(
            "GET", "/rest/v1/profiles", params={"id": f"eq.{user_id}", "select": "*", "limit": "1"}
        )
        if err:
            if err.code == NO_ROWS_CODE:
                return GatewayResult()
            return GatewayResult(error=err)
        rows = _json(resp) or []
        if not isinstance(rows, list):
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        if not rows:
            return GatewayResult()
        return _parsed("profile_response_invalid", Profile.model_validate, rows[0])

    async def username_taken(self, username: str) -> GatewayResult:
        resp, err = await self._request(
            "GET",
            "/rest/v1/profiles",
            params={"select": "username", "username": f"eq.{username.lower()}", "limit": "1"},
        )
        if err:
            return GatewayResult(error=err)
        return GatewayResult(data=bool(_json(resp)))

    # ------------------------------------------------------------------
    # entities
    # ------------------------------------------------------------------
    async def create_entity(self, request: CreateDreamRequest) -> GatewayResult:
        """create-dream-post: returns the new dream, interpretation possibly still a placeholder."""
        resp, err = await self._request(
            "POST", "/functions/v1/create-dream-post", json=request.model_dump()
        )
        if err:
            return GatewayResult(error=RemoteError(
                message=_function_error_message(err, "Failed to create dream"),
                code=err.code,
                status=err.status,
            ))
        data = _json(resp)
        if not isinstance(data, dict):
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        if data.get("success") is False:
            return GatewayResult(error=RemoteError(message=data.get("error") or "Failed to create dream"))
        post = data.get("post")
        if not isinstance(post, dict) or not post:
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        post = dict(post)
        post["interpretation"] = decode_interpretation(post.get("interpretation"))
        return _parsed("dream_response_invalid", DreamPost.model_validate, post)

    async def fetch_entity_by_id(self, entity_id: str) -> GatewayResult:
        resp, err = await self._request(
            "GET", "/rest/v1/dream_posts", params={"id": f"eq.{entity_id}", "select": "*", "limit": "1"}
        )
        if err:
            return GatewayResult(error=err)
        rows = _json(resp) or []
        if not isinstance(rows, list):
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        if not rows:
            return GatewayResult()
        return _parsed("dream_response_invalid", dream_from_row, rows[0])

    async def create_post(self, request: CreatePostRequest) -> GatewayResult:
        """create-post: uniqueness matching runs server-side; tier/percentile come back inline."""
        resp, err = await self._request(
            "POST", "/functions/v1/create-post", json=request.model_dump(exclude_none=True)
        )
        if err:
            return GatewayResult(error=RemoteError(
                message=_function_error_message(err, "Failed to create post"),
                code=err.code,
                status=err.status,
            ))
        data = _json(resp)
        if not isinstance(data, dict):
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        if data.get("success") is False:
            return GatewayResult(error=RemoteError(message=data.get("error") or "Post creation failed"))
        post = data.get("post")
        if not isinstance(post, dict) or not post.get("id"):
            return GatewayResult(error=RemoteError(message=INVALID_RESPONSE))
        post = dict(post)
        post["analytics"] = data.get("analytics") or {}
        return _parsed("post_response_invalid", CreatedPost.model_validate, post)
