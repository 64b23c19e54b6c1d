"""Conversational channels."""

from wellness_companion.channels.base import (
    ChatMessage,
    ConversationChannel,
    InMemoryConversationChannel,
)

__all__ = ["ChatMessage", "ConversationChannel", "InMemoryConversationChannel"]
