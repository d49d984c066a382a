"""Conversation persistence on top of the row store."""

import logging
import time
from datetime import datetime, timezone

from sogood.company import canonicalize_company_url, company_filter_params
from sogood.db import RagStore
from sogood.errors import InvalidPayloadError, NotFoundError, StoreError
from sogood.messages import normalize_messages, pick_most_complete_messages, sanitize_messages
from sogood.services.grouping import group_conversations, record_to_conversation
from sogood.services.resolver import derive_company
from sogood_models import Conversation, Message

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _first_content(messages: list[Message], role: str) -> str | None:
    for message in messages:
        if message.role == role:
            return message.content
    return None


class ConversationService:
    """Read, upsert and delete conversation rows."""

    def __init__(self, store: RagStore):
        self.store = store

    async def list(self) -> list[Conversation]:
        """All results rows grouped into one conversation per company."""
        rows = await self.store.select({"type": "eq.results"}, order="created_at.desc")
        return group_conversations(rows)

    async def get(self, conversation_id: str) -> Conversation:
        """Get a conversation by ID.

        Raises:
            NotFoundError: if no row has this ID

        """
        row = await self.store.get_row(conversation_id)
        if row is None:
            raise NotFoundError("Not found")
        return record_to_conversation(row)

    async def upsert(self, conversation: Conversation) -> Conversation:
        """Create or update a conversation without losing stored history.

        The stored created_at wins over the payload's, and the more complete
        of the stored and incoming message lists is written.
        """
        if not conversation.id or not conversation.title:
            raise InvalidPayloadError("Invalid payload")

        social_entry = (
            conversation.social_entry
            or _first_content(conversation.messages, "system")
            or _first_content(conversation.messages, "user")
        )
        existing = await self.store.get_row(conversation.id)

        created_at = conversation.created_at or _now_ms()
        if existing is not None and existing.created_at is not None:
            created_at = existing.created_at_ms

        messages = normalize_messages(
            conversation.id, created_at, social_entry, conversation.messages
        )
        if existing is not None:
            stored = sanitize_messages(existing.messages, existing.id, created_at)
            stored = normalize_messages(existing.id, created_at, existing.social_entry, stored)
            incoming_count = len(messages)
            messages = pick_most_complete_messages(stored, messages)
            logger.info(
                f"Upserting {conversation.id}: stored={len(stored)} "
                f"incoming={incoming_count} kept={len(messages)}"
            )

        row = {
            "id": conversation.id,
            "company": canonicalize_company_url(social_entry),
            "type": conversation.type or "results",
            "social_entry": social_entry,
            "context": conversation.context,
            "title": conversation.title,
            "messages": [m.model_dump() for m in messages],
            "created_at": datetime.fromtimestamp(created_at / 1000, tz=timezone.utc).isoformat(),
        }
        saved = await self.store.upsert(row)
        if saved is None:
            raise StoreError("Upsert failed")
        return record_to_conversation(saved)

    async def delete(self, conversation_id: str) -> None:
        """Delete a conversation and the context rows of its company."""
        parent = await self.store.get_row(conversation_id)
        if parent is not None:
            company = derive_company(parent)
            if company:
                await self.store.delete({"type": "eq.context", **company_filter_params(company)})
            elif parent.title:
                await self.store.delete({"type": "eq.context", "title": f"eq.{parent.title}"})

        await self.store.delete({"id": f"eq.{conversation_id}"})
        logger.info(f"Deleted conversation {conversation_id}")
