"""API-specific request and response models."""

from typing import Any

from pydantic import BaseModel, Field

from sogood_models import Conversation, ConversationRecord


class ConversationListResponse(BaseModel):
    """Response model for the grouped conversation list."""

    conversations: list[Conversation]


class ConversationResponse(BaseModel):
    """Response model for a single conversation."""

    conversation: Conversation


class ContextItem(BaseModel):
    """A context row as shown in the UI."""

    id: str
    title: str | None = None
    content: str
    created_at: int = Field(..., description="Epoch milliseconds")

    @classmethod
    def from_record(cls, row: ConversationRecord) -> "ContextItem":
        return cls(
            id=row.id,
            title=row.title,
            content=row.context or row.social_entry or "",
            created_at=row.created_at_ms,
        )


class ContextListResponse(BaseModel):
    """Response model for a conversation's context rows."""

    contexts: list[ContextItem]
    debug: dict[str, Any] | None = None


class ChatRequest(BaseModel):
    """Request model for a chat turn."""

    conversation_id: str = Field(..., min_length=1, description="Parent conversation ID")
    messages: list[Any] = Field(..., description="Client-side message history")


class ChatResponse(BaseModel):
    """Response model for a chat turn."""

    reply: str
    fallback: bool = False
    meta: dict[str, Any] = Field(default_factory=dict)


class ExportRequest(BaseModel):
    """Request model for a Google Doc export."""

    title: str | None = None
    content: str | None = None


class ExportResponse(BaseModel):
    """Response model for a Google Doc export."""

    url: str
