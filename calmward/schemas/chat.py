"""
Schemas for chat messages and the remote chat request.
"""

from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class ConversationMode(str, Enum):
    """
    Independent conversation contexts.

    LISTEN: "just listen to me", empathetic, unstructured.
    ORGANIZE: "help me organize", guided with small steps.
    """

    LISTEN = "listen"
    ORGANIZE = "organize"

    @property
    def api_value(self) -> str:
        """Mode name expected by the chat endpoint."""
        if self is ConversationMode.ORGANIZE:
            return "ayudame_a_ordenar"
        return "solo_escuchame"


class Author(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """
    A single message in a conversation thread. Immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    author: Author
    text: str


class HistoryEntry(BaseModel):
    role: str
    content: str


class ChatProfile(BaseModel):
    name: str = ""
    gender: str = ""
    country: str = ""


class ChatRequest(BaseModel):
    """
    Payload for POST /ai/talk.
    """

    model_config = ConfigDict(populate_by_name=True)

    mode: str = Field(..., description="Backend mode name")
    message: str = Field(..., description="Latest user message")
    history: List[HistoryEntry] = Field(default_factory=list)
    user_profile: Optional[ChatProfile] = Field(None, alias="userProfile")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
