"""
Authentication flow.

Bridges the authentication endpoints and the session manager:
successful responses open a session, failures come back as a
human-readable message and leave the session untouched.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from calmward.api import auth_client
from calmward.api.auth_client import AuthenticationError
from calmward.schemas.session import Gender, UserProfile
from calmward.state.session_manager import SessionManager
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

MISSING_TOKEN_MESSAGE = (
    "The server did not return a valid session token. Please try again later."
)


@dataclass
class AuthOutcome:
    """Result of an authentication attempt."""

    ok: bool
    error: Optional[str] = None


def _optional_bool(data: Dict[str, Any], key: str) -> Optional[bool]:
    value = data.get(key)
    return value if isinstance(value, bool) else None


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class AuthService:
    """
    Login, registration and password recovery for the client.

    The blocking HTTP helpers run in a worker thread.
    """

    def __init__(
        self,
        session: SessionManager,
        *,
        login_fn: Callable[..., Dict[str, Any]] = auth_client.login_user,
        register_fn: Callable[..., Dict[str, Any]] = auth_client.register_user,
        recover_fn: Callable[..., Dict[str, Any]] = auth_client.recover_password,
    ):
        self._session = session
        self._login_fn = login_fn
        self._register_fn = register_fn
        self._recover_fn = recover_fn

    async def sign_in(self, email: str, password: str) -> AuthOutcome:
        email = (email or "").strip()
        if not email or not password:
            return AuthOutcome(ok=False, error="Enter your email and password.")

        try:
            data = await asyncio.to_thread(self._login_fn, email, password)
        except AuthenticationError as exc:
            return AuthOutcome(ok=False, error=str(exc))

        return await self._open_session(email, data)

    async def register(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        gender: Optional[str] = None,
        country: Optional[str] = None,
    ) -> AuthOutcome:
        email = (email or "").strip()
        if not email or not password:
            return AuthOutcome(ok=False, error="Enter your email and password.")

        try:
            data = await asyncio.to_thread(
                self._register_fn,
                email,
                password,
                name=name,
                gender=gender,
                country=country,
            )
        except AuthenticationError as exc:
            return AuthOutcome(ok=False, error=str(exc))

        # Fall back to the submitted profile when the server omits it
        data = {
            "name": name,
            "gender": gender,
            "country": country,
            **{k: v for k, v in data.items() if v is not None},
        }
        return await self._open_session(email, data)

    async def recover_password(self, email: str) -> AuthOutcome:
        email = (email or "").strip()
        if not email:
            return AuthOutcome(ok=False, error="Enter your email.")

        try:
            await asyncio.to_thread(self._recover_fn, email)
        except AuthenticationError as exc:
            return AuthOutcome(ok=False, error=str(exc))
        return AuthOutcome(ok=True)

    async def _open_session(self, email: str, data: Dict[str, Any]) -> AuthOutcome:
        token = data.get("token")
        if not isinstance(token, str) or not token.strip():
            logger.warning(
                "Auth response without token",
                extra={"email": email},
            )
            return AuthOutcome(ok=False, error=MISSING_TOKEN_MESSAGE)

        profile = UserProfile(
            name=_optional_text(data, "name"),
            gender=Gender.parse(_optional_text(data, "gender")),
            country=_optional_text(data, "country"),
        )

        await self._session.login(
            _optional_text(data, "email") or email,
            token,
            _optional_bool(data, "isSponsor"),
            profile,
            is_premium=_optional_bool(data, "isPremium"),
            is_sponsor_active=_optional_bool(data, "isSponsorActive"),
            is_premium_active=_optional_bool(data, "isPremiumActive"),
        )
        return AuthOutcome(ok=True)
