"""
Conversation pipeline.

Keeps one in-memory thread per conversation mode and exchanges
messages with the remote chat endpoint.

Per mode:
    Idle -> Sending -> Idle

Only one request per mode can be in flight; a second send for the
same mode is rejected, not queued. The two modes are independent.

Every accepted send appends exactly one assistant message: the real
reply or a fixed fallback. Nothing here raises to the caller at
runtime.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from calmward.api.chat_client import send_chat_request
from calmward.config import settings
from calmward.schemas.chat import (
    Author,
    ChatMessage,
    ChatProfile,
    ChatRequest,
    ConversationMode,
    HistoryEntry,
)
from calmward.state.activity_tracker import ActivityTracker
from calmward.state.session_manager import SessionManager
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_ERROR_MESSAGE = (
    "The remote AI is not configured correctly in Calmward right now. "
    "Check the API base URL in the app configuration."
)
FALLBACK_MESSAGE = (
    "I couldn't get a reply from the Calmward server right now. "
    "Please try again in a few minutes."
)

# Priority order for locating the reply in a response body
REPLY_FIELDS = ("reply", "message", "content", "text")

ChatTransport = Callable[..., Dict[str, Any]]
ModeInput = Union[ConversationMode, str]


# ==================================================
# History helpers
# ==================================================
def history_from_messages(messages: Iterable[ChatMessage]) -> List[HistoryEntry]:
    """Translate thread messages into role-tagged history entries."""
    return [
        HistoryEntry(role=message.author.value, content=message.text)
        for message in messages
    ]


def messages_from_history(history: Iterable[HistoryEntry]) -> List[ChatMessage]:
    """Rebuild thread messages from role-tagged history entries."""
    return [
        ChatMessage(author=Author(entry.role), text=entry.content)
        for entry in history
    ]


def extract_reply(data: Any) -> Optional[str]:
    """
    Pick the reply text out of a chat response.

    Returns the first non-empty string among REPLY_FIELDS, trimmed,
    or None when nothing usable is present.
    """
    if not isinstance(data, dict):
        return None

    for field in REPLY_FIELDS:
        value = data.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ConversationThread:
    """Append-only list of messages for one mode."""

    def __init__(self, mode: ConversationMode):
        self.mode = mode
        self._messages: List[ChatMessage] = []

    def append(self, author: Author, text: str) -> ChatMessage:
        message = ChatMessage(author=author, text=text)
        self._messages.append(message)
        return message

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)


class ConversationPipeline:
    """
    Sends chat messages for the two conversation modes.

    Args:
        session: Source of the bearer token and profile context. When
            given, sends are rejected while logged out.
        activity: Tracker touched on every accepted send. Defaults to
            the session's tracker.
        base_url: Chat API base URL; empty means not configured.
        ai_enabled: Master switch for the remote endpoint.
        timeout_seconds: Deadline for one request.
        transport: Blocking function performing the HTTP call.
    """

    def __init__(
        self,
        *,
        session: Optional[SessionManager] = None,
        activity: Optional[ActivityTracker] = None,
        base_url: Optional[str] = None,
        ai_enabled: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        transport: ChatTransport = send_chat_request,
    ):
        self._session = session
        self._activity = activity or (session.activity if session else None)
        self._base_url = (
            settings.api_base_url if base_url is None else base_url.strip().rstrip("/")
        )
        self._ai_enabled = settings.AI_ENABLED if ai_enabled is None else ai_enabled
        self._timeout = (
            settings.CHAT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

        self._threads: Dict[ConversationMode, ConversationThread] = {}
        self._in_flight: set[ConversationMode] = set()
        self.reset()

    # ==================================================
    # State
    # ==================================================
    @property
    def remote_configured(self) -> bool:
        return self._ai_enabled and bool(self._base_url)

    def messages(self, mode: ModeInput) -> List[ChatMessage]:
        return self._threads[ConversationMode(mode)].messages

    def is_sending(self, mode: ModeInput) -> bool:
        return ConversationMode(mode) in self._in_flight

    def reset(self, mode: Optional[ModeInput] = None) -> None:
        """Discard one thread, or both when mode is None."""
        modes = list(ConversationMode) if mode is None else [ConversationMode(mode)]
        for item in modes:
            self._threads[item] = ConversationThread(item)

        logger.debug(
            "Conversation threads reset",
            extra={"modes": [item.value for item in modes]},
        )

    # ==================================================
    # Sending
    # ==================================================
    async def send(self, mode: ModeInput, text: str) -> Optional[ChatMessage]:
        """
        Send a user message and append the assistant's reply.

        Returns:
            The appended assistant message, or None if the send was
            rejected (empty text, mode busy, or no active session).

        Raises:
            ValueError: If mode is not a known conversation mode.
        """
        mode = ConversationMode(mode)
        trimmed = (text or "").strip()

        if not trimmed:
            return None

        if mode in self._in_flight:
            logger.debug(
                "Send rejected; request already in flight",
                extra={"mode": mode.value},
            )
            return None

        if self._session is not None and not self._session.is_logged_in:
            logger.info(
                "Send rejected; login required",
                extra={"mode": mode.value},
            )
            return None

        thread = self._threads[mode]
        self._in_flight.add(mode)

        try:
            thread.append(Author.USER, trimmed)

            if self._activity is not None:
                await self._activity.touch()

            if not self.remote_configured:
                logger.warning(
                    "Chat endpoint not configured; using local message",
                    extra={"mode": mode.value},
                )
                return thread.append(Author.ASSISTANT, CONFIG_ERROR_MESSAGE)

            reply = await self._request_reply(mode, trimmed, thread)
            return thread.append(Author.ASSISTANT, reply or FALLBACK_MESSAGE)

        finally:
            self._in_flight.discard(mode)

    def _build_request(
        self,
        mode: ConversationMode,
        text: str,
        thread: ConversationThread,
    ) -> ChatRequest:
        profile_context = None
        if self._session is not None and self._session.profile is not None:
            profile_context = self._session.profile.as_context()

        return ChatRequest(
            mode=mode.api_value,
            message=text,
            history=history_from_messages(thread.messages),
            user_profile=ChatProfile(**profile_context) if profile_context else None,
        )

    async def _request_reply(
        self,
        mode: ConversationMode,
        text: str,
        thread: ConversationThread,
    ) -> Optional[str]:
        """Run the HTTP call under the deadline. None on any failure."""
        request = self._build_request(mode, text, thread)
        token = self._session.token if self._session is not None else None

        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(
                    self._transport,
                    base_url=self._base_url,
                    payload=request.to_payload(),
                    token=token,
                    timeout=self._timeout,
                ),
                timeout=self._timeout,
            )

        except asyncio.TimeoutError:
            logger.warning(
                "Chat request timed out; using local reply",
                extra={"mode": mode.value, "timeout_seconds": self._timeout},
            )
            return None

        except Exception as exc:
            logger.warning(
                "Chat request failed; using local reply",
                extra={"mode": mode.value, "error": str(exc)},
            )
            return None

        reply = extract_reply(data)
        if reply is None:
            logger.warning(
                "Chat response had no usable reply field",
                extra={"mode": mode.value},
            )
        return reply
