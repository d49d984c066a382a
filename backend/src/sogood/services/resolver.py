"""Conversation resolution - loads a parent row and its sibling data rows."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from sogood.company import (
    canonicalize_company_url,
    company_filter_params,
    company_url_variants,
    normalize_company_value,
)
from sogood.config import Settings
from sogood.db import RagStore, SNIPPET_COLUMNS
from sogood.errors import NotFoundError
from sogood_models import ConversationRecord, PromptSnippet

logger = logging.getLogger(__name__)


@dataclass
class ResolvedConversation:
    """A conversation with the results and context snippets it can draw on."""

    parent: ConversationRecord
    company: str | None
    results: list[PromptSnippet] = field(default_factory=list)
    contexts: list[PromptSnippet] = field(default_factory=list)


def derive_company(row: ConversationRecord) -> str | None:
    """Company identity of a row: explicit company, else a URL social entry."""
    return normalize_company_value(row.company) or canonicalize_company_url(row.social_entry)


def derive_snippet_content(row: ConversationRecord) -> str:
    """Prompt text of a row: its context, else its social entry."""
    context = (row.context or "").strip()
    if context:
        return context
    return (row.social_entry or "").strip()


def to_snippets(rows: list[ConversationRecord]) -> list[PromptSnippet]:
    """Convert rows into snippets, dropping rows without any text."""
    snippets = []
    for row in rows:
        content = derive_snippet_content(row)
        if not content:
            continue
        snippets.append(
            PromptSnippet(id=row.id, title=row.title, content=content, created_at=row.created_at)
        )
    return snippets


class ConversationResolver:
    """Resolves a conversation ID to its parent row and company corpus."""

    def __init__(self, store: RagStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def load_parent(self, conversation_id: str) -> ConversationRecord:
        """Load the parent row, retrying once to absorb read-after-write lag.

        Raises:
            NotFoundError: if the row is still missing after the retry

        """
        parent = await self.store.get_row(conversation_id)
        if parent is None:
            delay = self.settings.store_read_retry_delay_ms / 1000
            logger.warning(f"Conversation {conversation_id} not found, retrying in {delay}s")
            await asyncio.sleep(delay)
            parent = await self.store.get_row(conversation_id)
        if parent is None:
            raise NotFoundError("Conversation not found")
        return parent

    async def resolve(self, conversation_id: str) -> ResolvedConversation:
        """Load the parent row and every results/context row for its company.

        Falls back to exact title matching for legacy rows with no company.
        """
        parent = await self.load_parent(conversation_id)
        company = derive_company(parent)
        title = (parent.title or "").strip()

        if company:
            link = company_filter_params(company)
        elif title:
            link = {"title": f"eq.{parent.title}"}
        else:
            logger.info(f"Conversation {conversation_id} has no company or title to link")
            return ResolvedConversation(parent=parent, company=None)

        results_rows, context_rows = await asyncio.gather(
            self.store.select(
                {"type": "eq.results", "id": f"neq.{conversation_id}", **link},
                columns=SNIPPET_COLUMNS,
                order="created_at.asc",
            ),
            self.store.select(
                {"type": "eq.context", **link},
                columns=SNIPPET_COLUMNS,
                order="created_at.asc",
            ),
        )

        resolved = ResolvedConversation(
            parent=parent,
            company=company,
            results=to_snippets([r for r in results_rows if r.id != conversation_id]),
            contexts=to_snippets(context_rows),
        )
        logger.info(
            f"Resolved {conversation_id}: company={company!r} "
            f"results={len(resolved.results)} contexts={len(resolved.contexts)}"
        )
        return resolved

    async def load_contexts(
        self,
        conversation_id: str,
        debug: bool = False,
    ) -> tuple[list[ConversationRecord], dict[str, Any] | None]:
        """List the context rows of a conversation for display.

        Resolution order: the parent's own company, a sibling results row's
        company found by title, then plain title matching.
        """
        info: dict[str, Any] = {"conversationId": conversation_id, "debugEnabled": debug}

        parent = await self.store.get_row(conversation_id)
        info["parentFound"] = parent is not None
        if parent is not None:
            info["parentRow"] = {
                "company": parent.company,
                "title": parent.title,
                "social_entry": parent.social_entry,
            }
        parent_title = parent.title if parent else None
        company = derive_company(parent) if parent else None

        if not company and parent_title:
            siblings = await self.store.select(
                {"type": "eq.results", "title": f"eq.{parent_title}"},
                columns="company,social_entry,title",
                order="created_at.desc",
                limit=25,
            )
            info["siblingResultsChecked"] = len(siblings)
            for sibling in siblings:
                maybe = derive_company(sibling)
                if maybe:
                    company = maybe
                    break

        rows: list[ConversationRecord] = []
        info["resolvedCompany"] = company
        if company:
            link = company_filter_params(company)
            info["companyVariants"] = company_url_variants(company)
            info["companyFilter"] = link
            rows = await self.store.select(
                {"type": "eq.context", **link},
                columns=SNIPPET_COLUMNS,
                order="created_at.asc",
            )
            info["companyMatchCount"] = len(rows)

        if not rows and parent_title:
            rows = await self.store.select(
                {"type": "eq.context", "title": f"eq.{parent_title}"},
                columns=SNIPPET_COLUMNS,
                order="created_at.asc",
            )
            info["usedTitleFallback"] = True
            info["titleFallback"] = parent_title
            info["titleMatchCount"] = len(rows)

        info["returnedContexts"] = len(rows)
        return rows, info if debug else None
