"""System prompt assembly.

The prompt is a pure function of its inputs so identical conversations always
produce identical prompts.

Structure:
1. Instructions (RESULTS are primary, CONTEXT is background)
2. Content pack output contract (when enabled)
3. Title, company, social entry, conversation context
4. RESULTS index + full text
5. CONTEXT index + full text
"""

from typing import Sequence

from sogood.services.content_pack import ContentPackController, build_output_format_block
from sogood.services.fallback import truncate
from sogood_models import ConversationRecord, PromptSnippet

INDEX_LINE_CHARS = 140
SNIPPET_SEPARATOR = "\n\n---\n\n"

PREAMBLE = (
    "You are a helpful assistant. The user's task is based on the RESULTS data below.",
    "RESULTS are the primary data: the task is about these rows.",
    "Use the CONTEXT section as supporting background information.",
    "Use ALL loaded rows, not just the most recent one.",
    "If the data does not contain the answer, say what is missing.",
)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _date(snippet: PromptSnippet) -> str:
    return snippet.created_at.date().isoformat() if snippet.created_at else "unknown date"


def _label(snippet: PromptSnippet, index: int) -> str:
    return (snippet.title or "").strip() or f"Row {index}"


def format_index(snippets: Sequence[PromptSnippet]) -> str:
    """One compact line per row."""
    return "\n".join(
        f"{i}. {_date(s)} | {_label(s, i)} | {truncate(_first_line(s.content), INDEX_LINE_CHARS)}"
        for i, s in enumerate(snippets, start=1)
    )


def format_full_text(
    snippets: Sequence[PromptSnippet],
    row_ids: Sequence[str] = (),
) -> str:
    """Full snippet bodies, optionally tagged with synthetic row IDs."""
    blocks = []
    for i, s in enumerate(snippets, start=1):
        header = f"#{i}"
        if i <= len(row_ids):
            header = f"{header} [{row_ids[i - 1]}]"
        title = (s.title or "").strip()
        if title:
            header = f"{header} ({title})"
        blocks.append(f"{header}\n{s.content.strip()}")
    return SNIPPET_SEPARATOR.join(blocks)


def build_system_prompt(
    parent: ConversationRecord,
    company: str | None,
    results: Sequence[PromptSnippet],
    contexts: Sequence[PromptSnippet],
    controller: ContentPackController | None = None,
) -> str:
    """Build the system prompt for a conversation turn."""
    lines: list[str] = list(PREAMBLE)

    if controller and controller.enabled:
        lines.append("")
        lines.append(build_output_format_block(controller))

    lines.append("")
    lines.append(f"Conversation title: {parent.title or 'Untitled'}")
    if company:
        lines.append(f"Company URL: {company}")

    social_entry = (parent.social_entry or "").strip()
    if social_entry and not results and not contexts:
        lines.append(f"Social entry: {social_entry}")

    parent_context = (parent.context or "").strip()
    if parent_context:
        lines.append("")
        lines.append("Conversation context:")
        lines.append(parent_context)

    if results:
        row_ids = controller.expected_ids if controller and controller.uses_row_ids else ()
        lines.append("")
        lines.append(f"=== RESULTS INDEX ({len(results)} rows) ===")
        lines.append(format_index(results))
        lines.append("")
        lines.append("=== RESULTS (primary data, the task is about these) ===")
        lines.append(format_full_text(results, row_ids))

    if contexts:
        lines.append("")
        lines.append(f"=== CONTEXT INDEX ({len(contexts)} rows) ===")
        lines.append(format_index(contexts))
        lines.append("")
        lines.append("=== CONTEXT (supporting background information) ===")
        lines.append(format_full_text(contexts))

    return "\n".join(lines)
