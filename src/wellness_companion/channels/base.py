"""Conversational channel interface and the in-process default."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from wellness_companion.logging import format_log_context, get_logger, truncate_log_text

logger = get_logger(__name__)

Role = Literal["user", "assistant"]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ChatMessage:
    """One message in a user's conversation."""

    role: Role
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }


MessageObserver = Callable[[str, ChatMessage], None]


class ConversationChannel(ABC):
    """
    Carries messages between the engine and a user.

    Implementations push assistant messages to the user's client and keep
    the ordered history of the conversation.
    """

    def __init__(self) -> None:
        self._observers: list[MessageObserver] = []

    @abstractmethod
    async def send_message(self, user_id: str, content: str) -> ChatMessage:
        """
        Append an assistant message and deliver it to the user.

        Raises:
            Exception: Implementations raise when delivery fails.
        """

    @abstractmethod
    async def record_user_message(self, user_id: str, content: str) -> ChatMessage:
        """Append an inbound user message to the history."""

    @abstractmethod
    def history(self, user_id: str) -> list[ChatMessage]:
        """Return the conversation, oldest first."""

    def last_role(self, user_id: str) -> Role | None:
        messages = self.history(user_id)
        return messages[-1].role if messages else None

    def subscribe(self, observer: MessageObserver) -> Callable[[], None]:
        """Register an observer called with (user_id, message) on every append."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, user_id: str, message: ChatMessage) -> None:
        for observer in list(self._observers):
            try:
                observer(user_id, message)
            except Exception as e:
                ctx = format_log_context("channel", channel="memory", user=user_id)
                logger.warning(f"{ctx} observer failed: {e}")


class InMemoryConversationChannel(ConversationChannel):
    """Keeps each user's conversation in process memory."""

    def __init__(self) -> None:
        super().__init__()
        self._messages: dict[str, list[ChatMessage]] = {}

    async def send_message(self, user_id: str, content: str) -> ChatMessage:
        return self._append(user_id, "assistant", content)

    async def record_user_message(self, user_id: str, content: str) -> ChatMessage:
        return self._append(user_id, "user", content)

    def history(self, user_id: str) -> list[ChatMessage]:
        return list(self._messages.get(user_id, []))

    def clear(self, user_id: str) -> None:
        self._messages.pop(user_id, None)

    def _append(self, user_id: str, role: Role, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self._messages.setdefault(user_id, []).append(message)
        ctx = format_log_context("message", channel="memory", user=user_id)
        logger.debug(f"{ctx} {role}: {truncate_log_text(content, 80)}")
        self._notify(user_id, message)
        return message
