"""
Authentication for Biblia against Supabase Auth (GoTrue).
Wraps the supabase-py auth client: keeps the current session, persists it in
local storage so it survives restarts and notifies listeners of SIGNED_IN /
SIGNED_OUT transitions.
"""

import json
import logging
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import httpx
from supabase import AsyncClient
from supabase import AuthError as SupabaseAuthError

from entities import ValidationError, from_row
from local_store import KeyValueStorage

logger = logging.getLogger(__name__)

INITIAL_SESSION = "INITIAL_SESSION"
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

MIN_PASSWORD_LENGTH = 6
SESSION_KEY = "biblia_auth_session"
UNREACHABLE_MESSAGE = "Could not reach the authentication server"


class AuthError(Exception):
    """Supabase Auth rejected a request or could not be reached."""


@dataclass
class User:
    id: str
    email: Optional[str] = None


@dataclass
class AuthSession:
    access_token: str
    user: User
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


AuthListener = Callable[[str, Optional[AuthSession]], None]


def validate_credentials(email: str, password: str) -> Tuple[str, str]:
    """Trim and check sign-in input. Raises ValidationError with a user-facing message."""
    email = (email or "").strip()
    password = (password or "").strip()
    if not email or not password:
        raise ValidationError("Please fill in email and password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return email, password


def _session_from_library(session: Any) -> Optional[AuthSession]:
    """Convert a supabase-py Session into the persisted AuthSession shape."""
    if session is None or not session.access_token or session.user is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        user=User(id=session.user.id, email=session.user.email),
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
    )


class AuthClient:
    """
    Email/password auth on Supabase.

    Usage:
        auth = AuthClient(create_supabase_client(url, anon_key), storage)
        unsubscribe = auth.on_auth_state_change(lambda event, session: ...)
        error = await auth.sign_in("me@example.com", "secret1")
    """

    def __init__(self, client: AsyncClient, storage: Optional[KeyValueStorage] = None):
        self.client = client
        self.storage = storage
        self._session: Optional[AuthSession] = None
        self._listeners: List[AuthListener] = []
        self._subscription = client.auth.on_auth_state_change(self._on_library_event)

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._session.user if self._session else None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, session: Optional[AuthSession], event: str):
        self._session = session
        if self.storage is not None:
            if session is None:
                self.storage.remove_item(SESSION_KEY)
            else:
                self.storage.set_json(SESSION_KEY, asdict(session))
        for listener in list(self._listeners):
            listener(event, session)

    def _on_library_event(self, event: str, session: Any):
        if event in (SIGNED_IN, TOKEN_REFRESHED):
            converted = _session_from_library(session)
            if converted is not None and not self._is_current(converted):
                self._set_session(converted, event)
        elif event == SIGNED_OUT and self._session is not None:
            self._set_session(None, SIGNED_OUT)

    def _is_current(self, session: AuthSession) -> bool:
        return self._session is not None and self._session.access_token == session.access_token

    def _signed_in(self, session: Any):
        # supabase-py normally reports the sign-in through _on_library_event already
        converted = _session_from_library(session)
        if converted is not None and not self._is_current(converted):
            self._set_session(converted, SIGNED_IN)

    def restore_session(self) -> Optional[AuthSession]:
        """Load a previously persisted session. Emits INITIAL_SESSION, never SIGNED_IN."""
        session = None
        if self.storage is not None:
            raw = self.storage.get_json(SESSION_KEY, None)
            if isinstance(raw, dict) and isinstance(raw.get("user"), dict):
                try:
                    session = from_row(AuthSession, {**raw, "user": from_row(User, raw["user"])})
                except TypeError as e:
                    logger.warning("Discarding stored session: %s", e)
        self._session = session
        for listener in list(self._listeners):
            listener(INITIAL_SESSION, session)
        return session

    async def close(self):
        """Stop receiving events from the Supabase auth client."""
        self._subscription.unsubscribe()

    async def _call(self, action: str, request: Awaitable[Any]) -> Any:
        try:
            return await request
        except SupabaseAuthError as e:
            raise AuthError(str(e)) from e
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", action, e)
            raise AuthError(UNREACHABLE_MESSAGE) from e

    async def sign_in(self, email: str, password: str) -> Optional[str]:
        """Sign in with email and password. Returns an error message, or None on success."""
        try:
            email, password = validate_credentials(email, password)
            response = await self._call("Sign-in", self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            ))
        except (ValidationError, AuthError) as e:
            return str(e)

        if response.session is None:
            return "Unexpected response from the authentication server"
        self._signed_in(response.session)
        return None

    async def sign_up(self, email: str, password: str) -> Optional[str]:
        """
        Create an account. Returns an error message, or None on success.

        When the project requires email confirmation no session is returned and
        the user stays signed out until they confirm and sign in.
        """
        try:
            email, password = validate_credentials(email, password)
            response = await self._call("Sign-up", self.client.auth.sign_up(
                {"email": email, "password": password}
            ))
        except (ValidationError, AuthError) as e:
            return str(e)

        if response.session is not None:
            self._signed_in(response.session)
        return None

    async def sign_out(self):
        """End the session locally, revoking it on the server when possible."""
        if self._session is None:
            return
        try:
            await self._call("Sign-out", self.client.auth.sign_out())
        except AuthError as e:
            logger.warning("Server sign-out failed, clearing local session anyway: %s", e)
        if self._session is not None:
            self._set_session(None, SIGNED_OUT)


def describe_session(session: Optional[AuthSession]) -> str:
    """Short, token-free description of a session for logs."""
    if session is None:
        return "anonymous"
    return json.dumps({"user_id": session.user.id, "email": session.user.email})
