"""Synchronous chat handler - resolves data, prompts the model, verifies coverage."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from sogood.config import Settings
from sogood.errors import InvalidPayloadError
from sogood.messages import last_user_request, merge_consecutive, merge_history, sanitize_messages
from sogood.services.anthropic_client import AnthropicClient, CompletionResult
from sogood.services.content_pack import CoverageRepairer, build_controller
from sogood.services.fallback import build_fallback_reply
from sogood.services.prompt_builder import build_system_prompt
from sogood.services.resolver import ConversationResolver
from sogood_models import ChatTurn

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    """Result of processing a chat turn."""

    reply: str
    fallback: bool = False
    meta: dict[str, Any] = field(default_factory=dict)


class ChatHandler:
    """Runs one conversation turn through the prompt pipeline."""

    def __init__(
        self,
        resolver: ConversationResolver,
        llm: AnthropicClient,
        settings: Settings,
    ):
        self.resolver = resolver
        self.llm = llm
        self.settings = settings

    async def handle(
        self,
        conversation_id: str,
        incoming: Sequence[Any],
        debug: bool = False,
    ) -> ChatResult:
        """Answer the latest user turn of a conversation.

        Args:
            conversation_id: Parent results row ID
            incoming: Messages sent by the client (full history or just the tail)
            debug: Include provider errors in the returned metadata

        Raises:
            NotFoundError: if the conversation does not exist
            InvalidPayloadError: if there is no user turn to answer

        """
        resolved = await self.resolver.resolve(conversation_id)
        parent = resolved.parent

        created_at = parent.created_at_ms or int(time.time() * 1000)
        stored = sanitize_messages(parent.messages, parent.id, created_at)
        submitted = sanitize_messages(list(incoming), parent.id, created_at)
        history = merge_history(stored, submitted)

        turns = merge_consecutive([m for m in history if m.role in ("user", "assistant")])
        if not any(t.role == "user" for t in turns):
            raise InvalidPayloadError("At least one user message is required")

        controller = build_controller(resolved.results)
        system = build_system_prompt(
            parent, resolved.company, resolved.results, resolved.contexts, controller
        )

        meta: dict[str, Any] = {
            "results": len(resolved.results),
            "contexts": len(resolved.contexts),
            "content_pack": controller.enabled,
        }

        first = await self.llm.complete(system, turns)
        if not first.ok:
            logger.warning(f"Model unavailable for {conversation_id}, using fallback reply")
            reply = build_fallback_reply(
                parent,
                resolved.company,
                resolved.results,
                resolved.contexts,
                last_user_request(turns),
                first.error,
            )
            if debug:
                meta["provider_error"] = first.error
            return ChatResult(reply=reply, fallback=True, meta=meta)

        if not controller.enabled:
            return ChatResult(reply=first.text or "", meta=meta)

        async def invoke(repair_turns: list[ChatTurn]) -> CompletionResult:
            return await self.llm.complete(system, repair_turns)

        repairer = CoverageRepairer(
            controller,
            max_passes=self.settings.content_pack_max_passes,
            batch_size=self.settings.content_pack_batch_size,
        )
        outcome = await repairer.run(first.text or "", turns, invoke)

        meta.update(
            {
                "id_source": controller.id_source,
                "expected_ids": controller.expected_ids,
                "output_ids": outcome.coverage.output_ids,
                "missing_ids": outcome.coverage.missing_ids,
                "repair_passes": outcome.passes,
            }
        )
        if debug and outcome.errors:
            meta["repair_errors"] = outcome.errors
        return ChatResult(reply=outcome.reply, meta=meta)
