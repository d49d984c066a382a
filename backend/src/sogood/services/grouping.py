"""Group raw rows into one listed conversation per company."""

from dataclasses import dataclass
from typing import Sequence

from sogood.messages import normalize_messages, sanitize_messages
from sogood.services.resolver import derive_company, derive_snippet_content
from sogood_models import Conversation, ConversationRecord, ConversationResult


@dataclass
class RowGroup:
    key: str
    rows: list[ConversationRecord]

    @property
    def latest_at(self) -> int:
        return max(r.created_at_ms for r in self.rows)


def group_key(row: ConversationRecord) -> str:
    """Company when one resolves, else title, else the row itself."""
    company = derive_company(row)
    if company:
        return f"company:{company}"
    title = (row.title or "").strip().lower()
    if title:
        return f"title:{title}"
    return f"chat:{row.id}"


def _primary_sort_key(row: ConversationRecord) -> tuple[int, int, int]:
    # ascending sort: more messages, then has a company, then newest
    return (-row.message_count, 0 if derive_company(row) else 1, -row.created_at_ms)


def pick_primary(rows: Sequence[ConversationRecord]) -> ConversationRecord:
    """The row that represents its group in the listing."""
    return sorted(rows, key=_primary_sort_key)[0]


def record_to_conversation(row: ConversationRecord) -> Conversation:
    """Serve a stored row with its messages sanitized and normalized."""
    created_at = row.created_at_ms
    messages = sanitize_messages(row.messages, row.id, created_at)
    return Conversation(
        id=row.id,
        title=row.title or "",
        messages=normalize_messages(row.id, created_at, row.social_entry, messages),
        created_at=created_at,
        type=row.type or "results",
        company=derive_company(row),
        social_entry=row.social_entry,
        context=row.context,
    )


def _sibling_results(primary: ConversationRecord, rows: Sequence[ConversationRecord]) -> list[ConversationResult]:
    results = []
    for row in rows:
        if row.id == primary.id or row.message_count:
            continue
        content = derive_snippet_content(row)
        if not content:
            continue
        results.append(
            ConversationResult(id=row.id, title=row.title, content=content, created_at=row.created_at_ms)
        )
    results.sort(key=lambda r: r.created_at)
    return results


def group_conversations(rows: Sequence[ConversationRecord]) -> list[Conversation]:
    """One conversation per company, most recently active first."""
    groups: dict[str, RowGroup] = {}
    for row in rows:
        key = group_key(row)
        groups.setdefault(key, RowGroup(key=key, rows=[])).rows.append(row)

    ordered = sorted(groups.values(), key=lambda g: g.latest_at, reverse=True)

    conversations = []
    for group in ordered:
        primary = pick_primary(group.rows)
        conversation = record_to_conversation(primary)
        conversation.results = _sibling_results(primary, group.rows)
        conversations.append(conversation)
    return conversations
