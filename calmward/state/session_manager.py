"""
Session state management.

Owns the authenticated identity, its profile and billing flags, and
the inactivity timeout. Everything is persisted as single string keys
so the session survives a restart, and restored once at startup.

States:
    UNINITIALIZED -> RESTORING -> {LOGGED_OUT, LOGGED_IN}

While LOGGED_IN a single background task checks inactivity on a
fixed interval. It is armed on every entry to LOGGED_IN and cancelled
on every exit, so at most one is ever alive. Login, logout and
inactivity expiry run one at a time under a shared lock.
"""

import asyncio
import contextlib
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from calmward.config import settings
from calmward.schemas.session import Gender, Session, UserProfile
from calmward.state.activity_tracker import (
    LAST_ACTIVITY_KEY,
    ActivityTracker,
    current_millis,
)
from calmward.storage.kv_store import KeyValueStore
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

# --------------------------------------------------
# Storage keys
# --------------------------------------------------
TOKEN_KEY = "calmward_token"
EMAIL_KEY = "calmward_email"
NAME_KEY = "calmward_name"
GENDER_KEY = "calmward_gender"
COUNTRY_KEY = "calmward_country"
SPONSOR_KEY = "calmward_is_sponsor"
PREMIUM_KEY = "calmward_is_premium"
SPONSOR_ACTIVE_KEY = "calmward_is_sponsor_active"
PREMIUM_ACTIVE_KEY = "calmward_is_premium_active"
SESSION_TIMEOUT_KEY = "calmward_session_timeout_minutes"

# Session field -> (storage key, billing API field)
FLAG_FIELDS: Dict[str, tuple] = {
    "is_sponsor": (SPONSOR_KEY, "isSponsor"),
    "is_premium": (PREMIUM_KEY, "isPremium"),
    "is_sponsor_active": (SPONSOR_ACTIVE_KEY, "isSponsorActive"),
    "is_premium_active": (PREMIUM_ACTIVE_KEY, "isPremiumActive"),
}

# Session field -> billing API field, kept in memory only
BILLING_DETAIL_FIELDS: Dict[str, str] = {
    "subscription_type": "subscriptionType",
    "premium_valid_until": "premiumValidUntil",
    "sponsor_valid_until": "sponsorValidUntil",
}

# Keys wiped on logout. The timeout is a device preference and survives.
SESSION_KEYS = (
    TOKEN_KEY,
    EMAIL_KEY,
    NAME_KEY,
    GENDER_KEY,
    COUNTRY_KEY,
    SPONSOR_KEY,
    PREMIUM_KEY,
    SPONSOR_ACTIVE_KEY,
    PREMIUM_ACTIVE_KEY,
)

MILLIS_PER_MINUTE = 60_000

BillingFetcher = Callable[[str], Dict[str, Any]]
SessionListener = Callable[["SessionStatus"], None]
ProfileInput = Union[UserProfile, Dict[str, Any], None]


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _coerce_profile(profile: ProfileInput) -> UserProfile:
    if profile is None:
        return UserProfile()
    if isinstance(profile, UserProfile):
        return UserProfile(
            name=_clean(profile.name),
            gender=profile.gender,
            country=_clean(profile.country),
        )
    return UserProfile(
        name=_clean(profile.get("name")),
        gender=Gender.parse(profile.get("gender")),
        country=_clean(profile.get("country")),
    )


class SessionManager:
    """
    Client session state machine.

    Persistence errors are logged and swallowed: a broken store
    degrades the session toward logged-out, never raises.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], int] = current_millis,
        billing_fetcher: Optional[BillingFetcher] = None,
        check_interval_seconds: Optional[float] = None,
        default_timeout_minutes: Optional[int] = None,
    ):
        self._store = store
        self._clock = clock
        self._billing_fetcher = billing_fetcher

        self._check_interval = (
            check_interval_seconds
            if check_interval_seconds is not None
            else settings.INACTIVITY_CHECK_INTERVAL_SECONDS
        )
        self._default_timeout = max(
            0,
            default_timeout_minutes
            if default_timeout_minutes is not None
            else settings.DEFAULT_SESSION_TIMEOUT_MINUTES,
        )

        self.activity = ActivityTracker(store, clock)

        self._status = SessionStatus.UNINITIALIZED
        self._session = Session(session_timeout_minutes=self._default_timeout)
        self._evaluator: Optional[asyncio.Task] = None
        self._billing_task: Optional[asyncio.Task] = None
        # Serializes login, logout and inactivity expiry
        self._transition_lock = asyncio.Lock()
        self._listeners: List[SessionListener] = []

    # ==================================================
    # Read access
    # ==================================================
    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_logged_in(self) -> bool:
        return self._status is SessionStatus.LOGGED_IN

    @property
    def session(self) -> Session:
        """Snapshot of the current session."""
        return self._session.model_copy(deep=True)

    @property
    def token(self) -> Optional[str]:
        return self._session.token

    @property
    def profile(self) -> Optional[UserProfile]:
        if self._session.profile is None:
            return None
        return self._session.profile.model_copy()

    @property
    def evaluator_active(self) -> bool:
        return self._evaluator is not None and not self._evaluator.done()

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback invoked with the new status on login/logout."""
        self._listeners.append(listener)

    # ==================================================
    # Storage helpers
    # ==================================================
    async def _read(self, key: str) -> Optional[str]:
        try:
            return await self._store.get(key)
        except Exception as exc:
            logger.warning(
                "Failed to read session key",
                extra={"key": key, "error": str(exc)},
            )
            return None

    async def _write(self, key: str, value: str) -> bool:
        try:
            await self._store.set(key, value)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to persist session key",
                extra={"key": key, "error": str(exc)},
            )
            return False

    async def _erase(self, key: str) -> bool:
        try:
            await self._store.remove(key)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to remove session key",
                extra={"key": key, "error": str(exc)},
            )
            return False

    async def _store_optional(self, key: str, value: Optional[str]) -> None:
        if value:
            await self._write(key, value)
        else:
            await self._erase(key)

    async def _store_flag(self, key: str, value: Optional[bool]) -> None:
        if value is None:
            await self._erase(key)
        else:
            await self._write(key, "1" if value else "0")

    async def _store_profile(self, profile: ProfileInput) -> Optional[UserProfile]:
        """Persist or clear each profile field. Returns the stored profile."""
        cleaned = _coerce_profile(profile)
        gender = None if cleaned.gender is Gender.UNSET else cleaned.gender.value

        await self._store_optional(NAME_KEY, cleaned.name)
        await self._store_optional(GENDER_KEY, gender)
        await self._store_optional(COUNTRY_KEY, cleaned.country)

        return None if cleaned.is_empty() else cleaned

    def _parse_timeout(self, raw: Optional[str]) -> int:
        parsed = _parse_int(raw)
        if parsed is None or parsed < 0:
            return self._default_timeout
        return parsed

    # ==================================================
    # Transitions
    # ==================================================
    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                logger.exception(
                    "Session listener failed",
                    extra={"status": self._status.value},
                )

    def _enter_logged_in(self) -> None:
        self._status = SessionStatus.LOGGED_IN
        self._arm_evaluator()
        self._notify()

    def _enter_logged_out(self) -> None:
        self._disarm_evaluator()
        self._cancel_billing_refresh()
        self._status = SessionStatus.LOGGED_OUT
        self._notify()

    def _schedule_billing_refresh(self) -> None:
        if self._billing_fetcher is None:
            return
        self._cancel_billing_refresh()
        self._billing_task = asyncio.get_running_loop().create_task(
            self.refresh_billing(),
            name="calmward-billing-refresh",
        )

    def _cancel_billing_refresh(self) -> None:
        task, self._billing_task = self._billing_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    def _arm_evaluator(self) -> None:
        self._disarm_evaluator()
        self._evaluator = asyncio.get_running_loop().create_task(
            self._evaluate_periodically(),
            name="calmward-inactivity-evaluator",
        )
        logger.debug(
            "Inactivity evaluator armed",
            extra={"interval_seconds": self._check_interval},
        )

    def _disarm_evaluator(self) -> None:
        task, self._evaluator = self._evaluator, None
        if task is None or task.done():
            return
        # The evaluator itself may trigger logout; it exits on its own.
        if task is asyncio.current_task():
            return
        task.cancel()
        logger.debug("Inactivity evaluator disarmed")

    async def _evaluate_periodically(self) -> None:
        while self._status is SessionStatus.LOGGED_IN:
            await asyncio.sleep(self._check_interval)
            await self.evaluate_inactivity(self._clock())

    # ==================================================
    # Public operations
    # ==================================================
    async def restore(self) -> SessionStatus:
        """
        Restore the persisted session. Runs once per process.

        A missing or unreadable token resolves to LOGGED_OUT. Every
        other field is restored best-effort on its own.
        """
        if self._status is not SessionStatus.UNINITIALIZED:
            logger.debug(
                "Session already restored",
                extra={"status": self._status.value},
            )
            return self._status

        self._status = SessionStatus.RESTORING

        async with self._transition_lock:
            return await self._restore_unlocked()

    async def _restore_unlocked(self) -> SessionStatus:
        try:
            timeout = self._parse_timeout(await self._read(SESSION_TIMEOUT_KEY))
            token = _clean(await self._read(TOKEN_KEY))

            if not token:
                self._session = Session(session_timeout_minutes=timeout)
                self._enter_logged_out()
                logger.info("No persisted session found")
                return self._status

            profile = UserProfile(
                name=_clean(await self._read(NAME_KEY)),
                gender=Gender.parse(await self._read(GENDER_KEY)),
                country=_clean(await self._read(COUNTRY_KEY)),
            )
            flags = {
                field: (await self._read(key)) == "1"
                for field, (key, _) in FLAG_FIELDS.items()
            }

            self._session = Session(
                token=token,
                email=_clean(await self._read(EMAIL_KEY)),
                profile=None if profile.is_empty() else profile,
                session_timeout_minutes=timeout,
                **flags,
            )

        except Exception:
            logger.exception("Session restore failed; starting logged out")
            self._session = Session(session_timeout_minutes=self._default_timeout)
            self._enter_logged_out()
            return self._status

        self._enter_logged_in()
        self._schedule_billing_refresh()
        logger.info(
            "Session restored",
            extra={"email": self._session.email},
        )
        return self._status

    async def login(
        self,
        email: str,
        token: str,
        is_sponsor: Optional[bool] = None,
        profile: ProfileInput = None,
        *,
        is_premium: Optional[bool] = None,
        is_sponsor_active: Optional[bool] = None,
        is_premium_active: Optional[bool] = None,
    ) -> None:
        """
        Open a session for a freshly authenticated identity.

        Any field not supplied is cleared, so nothing leaks from a
        previous identity. Calling it while logged in replaces the
        current identity.

        Raises:
            ValueError: If token is empty.
        """
        token = _clean(token)
        if not token:
            raise ValueError("login requires a non-empty token")
        email = _clean(email)
        flags = {
            "is_sponsor": is_sponsor,
            "is_premium": is_premium,
            "is_sponsor_active": is_sponsor_active,
            "is_premium_active": is_premium_active,
        }

        async with self._transition_lock:
            await self._write(TOKEN_KEY, token)
            await self._store_optional(EMAIL_KEY, email)

            for field, value in flags.items():
                await self._store_flag(FLAG_FIELDS[field][0], value)

            stored_profile = await self._store_profile(profile)
            await self.activity.touch()

            self._session = Session(
                token=token,
                email=email,
                profile=stored_profile,
                session_timeout_minutes=self._session.session_timeout_minutes,
                **{field: bool(value) for field, value in flags.items()},
            )
            self._enter_logged_in()
            self._schedule_billing_refresh()

        logger.info("Session opened", extra={"email": email})

    async def logout(self) -> None:
        """
        Clear the session in memory and in storage.

        Safe to call when already logged out.
        """
        async with self._transition_lock:
            await self._logout_unlocked()

    async def _logout_unlocked(self) -> None:
        was_logged_in = self.is_logged_in

        self._session = Session(
            session_timeout_minutes=self._session.session_timeout_minutes
        )
        self._enter_logged_out()

        for key in SESSION_KEYS:
            await self._erase(key)
        await self.activity.clear()

        if was_logged_in:
            logger.info("Session closed")

    async def update_profile(self, profile: ProfileInput) -> None:
        """Replace the profile fields of the current identity."""
        if not self.is_logged_in:
            logger.warning("Profile update ignored; no active session")
            return

        self._session.profile = await self._store_profile(profile)
        logger.info("Profile updated", extra={"email": self._session.email})

    async def set_sponsor(self, value: bool) -> None:
        await self._set_flag("is_sponsor", value)

    async def set_premium(self, value: bool) -> None:
        await self._set_flag("is_premium", value)

    async def _set_flag(self, field: str, value: bool) -> None:
        if not self.is_logged_in:
            logger.warning(
                "Flag update ignored; no active session",
                extra={"field": field},
            )
            return

        await self._store_flag(FLAG_FIELDS[field][0], bool(value))
        setattr(self._session, field, bool(value))

    async def set_session_timeout_minutes(self, minutes: int) -> int:
        """
        Change the inactivity threshold. 0 disables expiry.

        Returns the stored (clamped) value.
        """
        safe = max(0, int(minutes))
        await self._write(SESSION_TIMEOUT_KEY, str(safe))
        self._session.session_timeout_minutes = safe

        logger.info(
            "Session timeout updated",
            extra={"minutes": safe},
        )
        return safe

    async def refresh_billing(self) -> bool:
        """
        Reload subscription flags from the billing endpoint.

        Failures are silent. Returns True when the flags were updated.
        """
        if not self.is_logged_in or self._billing_fetcher is None:
            return False

        token = self._session.token
        try:
            data = await asyncio.to_thread(self._billing_fetcher, token)
        except Exception as exc:
            logger.warning(
                "Billing refresh failed",
                extra={"error": str(exc)},
            )
            return False

        # Identity changed while the request was in flight
        if not self.is_logged_in or self._session.token != token:
            return False

        if not isinstance(data, dict):
            return False

        for field, api_field in BILLING_DETAIL_FIELDS.items():
            value = data.get(api_field)
            setattr(self._session, field, _clean(value) if isinstance(value, str) else None)

        for field, (key, api_field) in FLAG_FIELDS.items():
            value = bool(data.get(api_field))
            await self._store_flag(key, value)
            setattr(self._session, field, value)

        logger.debug(
            "Billing flags refreshed",
            extra={"subscription_type": self._session.subscription_type},
        )
        return True

    async def wait_for_billing(self) -> None:
        """Wait for a scheduled billing refresh, if any, to finish."""
        task = self._billing_task
        if task is None or task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def evaluate_inactivity(self, now: Optional[int] = None) -> bool:
        """
        Expire the session if it has been idle longer than the timeout.

        Args:
            now: Current time in ms since epoch (defaults to the clock).

        Returns:
            True if the session was expired by this call.
        """
        if not self.is_logged_in:
            return False

        timeout = self._session.session_timeout_minutes
        if timeout <= 0:
            return False

        token = self._session.token
        mark = _parse_int(await self._read(LAST_ACTIVITY_KEY))
        if not mark:
            return False

        if not self.is_logged_in or self._session.token != token:
            return False

        now = self._clock() if now is None else now
        if now - mark <= timeout * MILLIS_PER_MINUTE:
            return False

        async with self._transition_lock:
            # A login may have replaced the identity while we waited
            if not self.is_logged_in or self._session.token != token:
                return False
            mark = _parse_int(await self._read(LAST_ACTIVITY_KEY))
            if not mark:
                return False
            idle_ms = now - mark
            if idle_ms <= timeout * MILLIS_PER_MINUTE:
                return False

            logger.info(
                "Session expired after inactivity",
                extra={"idle_ms": idle_ms, "timeout_minutes": timeout},
            )
            await self._logout_unlocked()
        return True

    async def shutdown(self) -> None:
        """Cancel background work. Call before the event loop closes."""
        tasks = [self._evaluator, self._billing_task]
        self._disarm_evaluator()
        self._cancel_billing_refresh()

        for task in tasks:
            if task is not None and task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task
