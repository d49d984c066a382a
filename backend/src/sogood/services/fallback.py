"""Offline reply used when the model cannot be reached."""

import re
from typing import Sequence

from sogood_models import ConversationRecord, PromptSnippet

SNIPPET_PREVIEW_CHARS = 320
LOW_CREDIT = re.compile(r"credit balance (?:is )?too low", re.IGNORECASE)


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return f"{text[:limit].rstrip()}…"


def is_low_credit_error(error: str | None) -> bool:
    return bool(error and LOW_CREDIT.search(error))


def _snippet_lines(label: str, snippets: Sequence[PromptSnippet]) -> list[str]:
    if not snippets:
        return []
    lines = ["", f"{label} ({len(snippets)}):"]
    for index, snippet in enumerate(snippets, start=1):
        title = (snippet.title or "").strip() or f"Row {index}"
        lines.append(f"{index}. {title}")
        lines.append(f"   {truncate(snippet.content, SNIPPET_PREVIEW_CHARS)}")
    return lines


def build_fallback_reply(
    parent: ConversationRecord,
    company: str | None,
    results: Sequence[PromptSnippet],
    contexts: Sequence[PromptSnippet],
    user_request: str | None,
    error: str | None,
) -> str:
    """Data-only reply listing everything that was loaded for the conversation."""
    lines = [
        "I couldn't reach the language model just now, so here is the data "
        "loaded for this conversation instead of a generated answer."
    ]
    if is_low_credit_error(error):
        lines.append(
            "The model provider reports that the API credit balance is too low. "
            "Add credits to the Anthropic account and try again."
        )

    lines.append("")
    lines.append(f"Conversation: {parent.title or 'Untitled'}")
    if company:
        lines.append(f"Company: {company}")
    if user_request:
        lines.append(f"Your request: {truncate(user_request, SNIPPET_PREVIEW_CHARS)}")

    lines.extend(_snippet_lines("RESULTS", results))
    lines.extend(_snippet_lines("CONTEXT", contexts))
    if not results and not contexts:
        lines.append("")
        lines.append("No results or context rows are stored for this conversation yet.")

    return "\n".join(lines)
