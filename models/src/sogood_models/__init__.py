"""Shared Pydantic models for sogood."""

from sogood_models.conversation import (
    ChatTurn,
    Conversation,
    ConversationRecord,
    ConversationResult,
    Message,
    PromptSnippet,
    RecordType,
    Role,
)

__all__ = [
    "ChatTurn",
    "Conversation",
    "ConversationRecord",
    "ConversationResult",
    "Message",
    "PromptSnippet",
    "RecordType",
    "Role",
]
