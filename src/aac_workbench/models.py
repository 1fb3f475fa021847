# SPDX-License-Identifier: Apache-2.0
"""
Chat data models and assistant-backend wire shapes.

Python attributes are snake_case; the wire format is camelCase. Dump with
``by_alias=True`` when talking to the backend.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"
    system = "system"


class ReplyType(str, Enum):
    text = "text"
    html = "html"


class MessageContent(_WireModel):
    """Structured message content: rendered markup plus feature payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    text: str | None = None
    html: str | None = None
    board_generator_data: Any = None
    interpret_data: Any = None

    def get(self, key: str) -> Any:
        """Look up a payload by its wire name (or any extra key)."""
        return self.model_dump(by_alias=True).get(key)


class ChatMessage(_WireModel):
    role: MessageRole = MessageRole.assistant
    content: str | MessageContent = ""
    timestamp: int = Field(default_factory=now_ms)
    metadata: dict[str, Any] | None = None
    error: str | None = None
    credits: float | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_structured(self) -> bool:
        return isinstance(self.content, MessageContent)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ChatSession(_WireModel):
    id: str
    user_id: str | None = None
    subject_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("subjectId", "aacUserId", "subject_id"),
    )
    chat_mode: str = "chat"
    started: datetime = Field(default_factory=_utcnow)
    last_update: datetime = Field(default_factory=_utcnow)
    state: Any = Field(default_factory=dict)
    log: list[ChatMessage] = Field(default_factory=list)
    last: list[ChatMessage] = Field(default_factory=list)
    credits_used: float = 0
    status: str = "open"


# ---------------------------------------------------------------------------
# Backend request / response
# ---------------------------------------------------------------------------

class ChatRequest(_WireModel):
    messages: list[ChatMessage]
    reply_type: ReplyType = ReplyType.html
    mode: str
    session_id: str | None = None
    user_id: str | None = None
    subject_id: str | None = None
    mode_context: Any = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ChatResponse(_WireModel):
    message: ChatMessage | None = None
    context_data: Any = None
    session_id: str | None = None
    chat_state: Any = None
    credits_used: float | None = None
    error: str | None = None
    details: str | None = None


class SessionFetchResponse(_WireModel):
    success: bool = False
    session: ChatSession | None = None
