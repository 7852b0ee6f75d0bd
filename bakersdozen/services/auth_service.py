# bakersdozen/services/auth_service.py
"""
Authentication service using Supabase auth plus the `users` profile table.

The backend splits identity in two: the auth record (id, email, created_at)
and a profile row carrying the role. Every method here joins them into one
`User`. A missing profile row is not an error: the role defaults to "user".
Profile writes are best-effort because row-level security may reject them
for a freshly created account.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Set

from pydantic import BaseModel, ConfigDict

from bakersdozen.config.settings import settings
from bakersdozen.config.supabase import supabase_client
from bakersdozen.models import User

logger = logging.getLogger(__name__)

NO_ROWS_CODE = "PGRST116"

AuthCallback = Callable[[str, Any], Any]


class AuthResponse(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: Optional[User] = None
    session: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    """Read `name` from an SDK model or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_user(auth_user: Any, role: Optional[str] = None) -> User:
    return User(
        id=str(_attr(auth_user, "id")),
        email=_attr(auth_user, "email") or "",
        role=role if role in ("admin", "user") else "user",
        created_at=_iso(_attr(auth_user, "created_at")) or _now_iso(),
    )


class AuthService:

    def __init__(self, supabase: Any = None, request_timeout: Optional[float] = None):
        self._supabase = supabase if supabase is not None else supabase_client
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.request_timeout
        )
        self._pending: Set[asyncio.Task] = set()

    @property
    def client(self) -> Any:
        return getattr(self._supabase, "client", None)

    async def _bounded(self, awaitable: Any) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.request_timeout)

    async def _fetch_role(self, user_id: str) -> Optional[str]:
        """
        Role from the profile row. Returns None when the row does not exist;
        raises on any other backend error.
        """
        try:
            resp = await self._bounded(
                self.client.table("users").select("role").eq("id", user_id).single().execute()
            )
        except Exception as exc:
            if str(getattr(exc, "code", "")) == NO_ROWS_CODE:
                logger.info("No profile row for user %s yet; defaulting role", user_id)
                return None
            raise
        return _attr(_attr(resp, "data"), "role")

    # -----------------------
    # Session
    # -----------------------
    async def get_session(self) -> AuthResponse:
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            session = await self._bounded(self.client.auth.get_session())
        except Exception as exc:
            logger.error("get_session failed: %s", exc)
            return AuthResponse(error=str(exc))
        return AuthResponse(session=session)

    async def get_user(self, jwt: Optional[str] = None) -> AuthResponse:
        """
        User with profile role, or user=None when signed out. With `jwt` the
        user is resolved from that access token instead of the client session.
        """
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            resp = await self._bounded(self.client.auth.get_user(jwt))
        except Exception as exc:
            logger.error("get_user failed: %s", exc)
            return AuthResponse(error=str(exc))

        auth_user = _attr(resp, "user")
        if auth_user is None:
            return AuthResponse()

        try:
            role = await self._fetch_role(str(_attr(auth_user, "id")))
        except Exception as exc:
            logger.error("Profile lookup failed for %s: %s", _attr(auth_user, "id"), exc)
            return AuthResponse(error=str(exc))
        return AuthResponse(user=_to_user(auth_user, role))

    # -----------------------
    # Sign in / up / out
    # -----------------------
    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        logger.info("sign_in_with_password email=%s", email)
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            resp = await self._bounded(
                self.client.auth.sign_in_with_password({"email": email, "password": password})
            )
        except Exception as exc:
            logger.warning("Sign in failed for %s: %s", email, exc)
            return AuthResponse(error=str(exc))

        auth_user = _attr(resp, "user")
        if auth_user is None:
            return AuthResponse(error="sign_in_failed")

        try:
            role = await self._fetch_role(str(_attr(auth_user, "id")))
        except Exception as exc:
            logger.error("Profile lookup failed on sign in for %s: %s", email, exc)
            return AuthResponse(error=str(exc))
        return AuthResponse(user=_to_user(auth_user, role), session=_attr(resp, "session"))

    async def sign_up(self, email: str, password: str) -> AuthResponse:
        logger.info("sign_up email=%s", email)
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            resp = await self._bounded(
                self.client.auth.sign_up(
                    {
                        "email": email,
                        "password": password,
                        "options": {"data": {"role": "user"}},
                    }
                )
            )
        except Exception as exc:
            logger.error("Error in signup process for %s: %s", email, exc)
            return AuthResponse(error=str(exc))

        auth_user = _attr(resp, "user")
        if auth_user is None:
            return AuthResponse(error="sign_up_failed")

        user = _to_user(auth_user, "user")
        try:
            await self._bounded(
                self.client.table("users")
                .insert(
                    {
                        "id": user.id,
                        "email": user.email,
                        "role": "user",
                        "created_at": _now_iso(),
                    }
                )
                .execute()
            )
        except Exception as exc:
            # row-level security commonly rejects this before email confirmation
            logger.warning("Could not create user profile for %s: %s", email, exc)

        return AuthResponse(user=user, session=_attr(resp, "session"))

    async def sign_out(self) -> AuthResponse:
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            await self._bounded(self.client.auth.sign_out())
        except Exception as exc:
            logger.error("sign_out failed: %s", exc)
            return AuthResponse(error=str(exc))
        return AuthResponse()

    async def reset_password(self, email: str) -> AuthResponse:
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        try:
            await self._bounded(
                self.client.auth.reset_password_for_email(
                    email, {"redirect_to": f"{settings.site_url}/reset-password"}
                )
            )
        except Exception as exc:
            logger.error("reset_password failed for %s: %s", email, exc)
            return AuthResponse(error=str(exc))
        return AuthResponse()

    async def update_user(self, password: Optional[str] = None) -> AuthResponse:
        if self.client is None:
            return AuthResponse(error="no_supabase_client")
        attributes = {}
        if password is not None:
            attributes["password"] = password
        try:
            await self._bounded(self.client.auth.update_user(attributes))
        except Exception as exc:
            logger.error("update_user failed: %s", exc)
            return AuthResponse(error=str(exc))
        return AuthResponse()

    async def is_admin(self) -> bool:
        res = await self.get_user()
        return bool(res.user and res.user.role == "admin")

    async def is_logged_in(self) -> bool:
        res = await self.get_user()
        return res.user is not None

    # -----------------------
    # Auth state events
    # -----------------------
    async def upsert_profile(self, auth_user: Any) -> bool:
        """Idempotent profile upsert. Failures are logged, never raised."""
        metadata = _attr(auth_user, "user_metadata") or {}
        row = {
            "id": str(_attr(auth_user, "id")),
            "email": _attr(auth_user, "email") or "",
            "role": metadata.get("role") or "user",
            "created_at": _now_iso(),
        }
        try:
            await self._bounded(self.client.table("users").upsert(row).execute())
        except Exception as exc:
            logger.warning("Could not create/update user profile on sign in: %s", exc)
            return False
        return True

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping auth background work")
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        """
        Forward backend session events (SIGNED_IN, SIGNED_OUT, USER_UPDATED,
        TOKEN_REFRESHED, ...) to `callback(event, session)`. Coroutine
        callbacks are scheduled on the running loop. Returns an unsubscribe
        function.
        """
        if self.client is None:
            logger.warning("on_auth_state_change: no Supabase client; no events will fire")
            return lambda: None

        def handler(event: str, session: Any) -> None:
            if event == "SIGNED_IN" and session is not None:
                self._spawn(self.upsert_profile(_attr(session, "user")))
            try:
                result = callback(event, session)
            except Exception:
                logger.exception("Auth state callback failed for %s", event)
                return
            if inspect.iscoroutine(result):
                self._spawn(result)

        subscription = self.client.auth.on_auth_state_change(handler)
        return subscription.unsubscribe
