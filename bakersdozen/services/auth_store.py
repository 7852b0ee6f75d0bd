# bakersdozen/services/auth_store.py
"""
Holder of the signed-in user for a UI tier.

Plain Python: state is read through attributes/properties and changes are
pushed to listeners registered with `subscribe()`. Adapting this to any
particular reactivity model is the UI tier's job.

Every action returns {"success": bool, "message": str (on failure)}.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from bakersdozen.models import User
from bakersdozen.services.auth_service import AuthService

logger = logging.getLogger(__name__)

UserListener = Callable[[Optional[User]], None]


def _failure(message: str) -> Dict[str, Any]:
    return {"success": False, "message": message}


class AuthStore:

    def __init__(self, auth: Optional[AuthService] = None):
        self.auth = auth if auth is not None else AuthService()
        self._user: Optional[User] = None
        self.loading = False
        self.error: Optional[str] = None
        self._listeners: List[UserListener] = []
        self._unsubscribe_auth: Optional[Callable[[], None]] = None

    # -----------------------
    # State
    # -----------------------
    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def is_admin(self) -> bool:
        return bool(self._user and self._user.role == "admin")

    @property
    def is_logged_in(self) -> bool:
        return self._user is not None

    def _set_user(self, user: Optional[User]) -> None:
        self._user = user
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:
                logger.exception("AuthStore listener failed")

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -----------------------
    # Actions
    # -----------------------
    async def initialize(self) -> None:
        """Load the user for the persisted session, if any."""
        self.loading = True
        try:
            session_res = await self.auth.get_session()
            if session_res.error:
                raise RuntimeError(session_res.error)
            if session_res.session is None:
                self._set_user(None)
                return
            user_res = await self.auth.get_user()
            if user_res.error:
                raise RuntimeError(user_res.error)
            self._set_user(user_res.user)
        except Exception as exc:
            logger.error("Failed to initialize auth store: %s", exc)
            self._set_user(None)
        finally:
            self.loading = False

    async def _run(self, action: Callable[[], Any]) -> Dict[str, Any]:
        self.loading = True
        self.error = None
        try:
            res = await action()
            if res.error:
                self.error = res.error
                return _failure(res.error)
            return {"success": True, "response": res}
        finally:
            self.loading = False

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        out = await self._run(lambda: self.auth.sign_in_with_password(email, password))
        return self._adopt_user(out, "Failed to sign in")

    async def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        out = await self._run(lambda: self.auth.sign_up(email, password))
        return self._adopt_user(out, "Failed to sign up")

    def _adopt_user(self, out: Dict[str, Any], failure_message: str) -> Dict[str, Any]:
        if not out["success"]:
            return out
        user = out.pop("response").user
        if user is None:
            return _failure(failure_message)
        self._set_user(user)
        return out

    async def sign_out(self) -> Dict[str, Any]:
        out = await self._run(self.auth.sign_out)
        if out["success"]:
            out.pop("response")
            self._set_user(None)
        return out

    async def reset_password(self, email: str) -> Dict[str, Any]:
        out = await self._run(lambda: self.auth.reset_password(email))
        out.pop("response", None)
        return out

    async def update_password(self, password: str) -> Dict[str, Any]:
        out = await self._run(lambda: self.auth.update_user(password=password))
        out.pop("response", None)
        return out

    # -----------------------
    # Auth event wiring
    # -----------------------
    async def _on_auth_event(self, event: str, session: Any) -> None:
        if event in ("SIGNED_IN", "USER_UPDATED") and session is not None:
            res = await self.auth.get_user()
            if not res.error and res.user is not None:
                self._set_user(res.user)
        elif event == "SIGNED_OUT":
            self._set_user(None)

    def start_listening(self) -> None:
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.auth.on_auth_state_change(self._on_auth_event)

    def stop_listening(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
