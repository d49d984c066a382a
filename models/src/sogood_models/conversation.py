"""Conversation, message and snippet models."""

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]
RecordType = Literal["results", "context"]


class Message(BaseModel):
    """A single message in a conversation."""

    id: str = Field(..., description="Unique message ID")
    role: Role = Field(..., description="Message role")
    content: str = Field(..., description="Message content")
    timestamp: int = Field(..., description="Epoch milliseconds")


class ChatTurn(BaseModel):
    """A role/content pair sent to the model."""

    role: Role = Field(..., description="Turn role")
    content: str = Field("", description="Turn content")


class ConversationRecord(BaseModel):
    """A raw row of the `sogood_rag` table."""

    id: str = Field(..., description="Row ID")
    company: str | None = Field(None, description="Company URL (free text)")
    type: str | None = Field("results", description="results or context")
    social_entry: str | None = Field(None, description="Text or URL that started the thread")
    context: str | None = Field(None, description="Supplementary free text")
    title: str | None = Field(None, description="Display title")
    messages: Any = Field(None, description="Stored messages, unvalidated")
    created_at: datetime | None = Field(None, description="Creation timestamp")

    @property
    def created_at_ms(self) -> int:
        """Creation time in epoch milliseconds (0 when unknown)."""
        if self.created_at is None:
            return 0
        return int(self.created_at.timestamp() * 1000)

    @property
    def message_count(self) -> int:
        """Number of stored messages, without validating them."""
        return len(self.messages) if isinstance(self.messages, list) else 0


class PromptSnippet(BaseModel):
    """A results or context row reduced to prompt-ready text."""

    id: str = Field(..., description="Source row ID")
    title: str | None = Field(None, description="Source row title")
    content: str = Field(..., description="Derived non-empty text")
    created_at: datetime | None = Field(None, description="Source row creation timestamp")


class ConversationResult(BaseModel):
    """A sibling results row shown alongside a conversation."""

    id: str
    title: str | None = None
    content: str
    created_at: int = Field(..., description="Epoch milliseconds")


class Conversation(BaseModel):
    """A conversation thread as served to the UI."""

    id: str = Field(..., description="Conversation ID")
    title: str = Field(..., description="Conversation title")
    messages: list[Message] = Field(default_factory=list)
    created_at: int = Field(..., description="Epoch milliseconds")
    type: str = Field("results", description="Row type")
    company: str | None = Field(None, description="Canonical company URL")
    social_entry: str | None = Field(None, description="Originating text or URL")
    context: str | None = Field(None, description="Supplementary free text")
    results: list[ConversationResult] | None = Field(
        None, description="Sibling results rows for the same company"
    )
