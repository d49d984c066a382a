"""Unit tests for system prompt assembly and the offline fallback reply."""

from datetime import datetime, timezone

from sogood.services.content_pack import build_controller
from sogood.services.fallback import build_fallback_reply, is_low_credit_error, truncate
from sogood.services.prompt_builder import (
    INDEX_LINE_CHARS,
    build_system_prompt,
    format_full_text,
    format_index,
)
from sogood_models import ConversationRecord, PromptSnippet

PARENT = ConversationRecord(id="c1", title="Acme", social_entry="https://acme.com/")


def snippet(content: str, title: str | None = None, day: int | None = None) -> PromptSnippet:
    created = datetime(2025, 1, day, tzinfo=timezone.utc) if day else None
    return PromptSnippet(id=f"s-{title}", title=title, content=content, created_at=created)


class TestFormat:
    """Test index and full-text formatting."""

    def test_index_truncates_first_line(self):
        long_line = "x" * 500
        index = format_index([snippet(f"\n{long_line}\nsecond", "Posts", 2)])
        assert index.startswith("1. 2025-01-02 | Posts | ")
        assert index.endswith("…")
        assert len(index.split(" | ")[-1]) == INDEX_LINE_CHARS + 1

    def test_index_labels_untitled_rows(self):
        assert format_index([snippet("body")]) == "1. unknown date | Row 1 | body"

    def test_full_text_is_never_truncated(self):
        body = "y" * 5000
        text = format_full_text([snippet(body, "Big")])
        assert text == f"#1 (Big)\n{body}"

    def test_full_text_row_ids_and_separator(self):
        text = format_full_text([snippet("a", "One"), snippet("b")], ["ROW-1", "ROW-2"])
        assert text == "#1 [ROW-1] (One)\na\n\n---\n\n#2 [ROW-2]\nb"


class TestBuildSystemPrompt:
    """Test build_system_prompt."""

    def test_sections_in_order(self):
        prompt = build_system_prompt(
            PARENT,
            "https://acme.com/",
            [snippet("result body", "Posts")],
            [snippet("voice body", "Voice")],
        )
        results_at = prompt.index("=== RESULTS INDEX (1 rows) ===")
        full_at = prompt.index("=== RESULTS (primary data, the task is about these) ===")
        context_at = prompt.index("=== CONTEXT INDEX (1 rows) ===")
        assert results_at < full_at < context_at
        assert "=== CONTEXT (supporting background information) ===" in prompt
        assert "Company URL: https://acme.com/" in prompt
        assert "Social entry:" not in prompt
        assert "MANDATORY OUTPUT FORMAT" not in prompt

    def test_social_entry_only_without_data(self):
        prompt = build_system_prompt(PARENT, None, [], [])
        assert "Social entry: https://acme.com/" in prompt
        assert "RESULTS INDEX" not in prompt

    def test_deterministic(self):
        args = (PARENT, "https://acme.com/", [snippet("a", "A")], [])
        assert build_system_prompt(*args) == build_system_prompt(*args)

    def test_content_pack_block_and_row_ids(self):
        results = [snippet("Content pack: Hook, CTA, Final Post, Variants", "Launch")]
        controller = build_controller(results)
        prompt = build_system_prompt(PARENT, None, results, [], controller)
        assert "=== MANDATORY OUTPUT FORMAT (content packs) ===" in prompt
        assert "- ROW-1 = Launch" in prompt
        assert "#1 [ROW-1] (Launch)" in prompt


class TestFallback:
    """Test the offline fallback reply."""

    def test_low_credit_reply_lists_everything(self):
        error = 'HTTP 400: {"error": {"message": "Your credit balance is too low to access the API"}}'
        results = [snippet("r" * 1000, "Posts"), snippet("second result", None)]
        contexts = [snippet("Friendly and direct", "Brand voice")]
        reply = build_fallback_reply(PARENT, "https://acme.com/", results, contexts, "Write packs", error)

        assert reply.startswith("I couldn't reach the language model")
        assert "Add credits to the Anthropic account" in reply
        assert "Company: https://acme.com/" in reply
        assert "Your request: Write packs" in reply
        for title in ("Posts", "Row 2", "Brand voice"):
            assert title in reply
        assert "r" * 320 + "…" in reply
        assert "r" * 321 not in reply

    def test_other_errors_have_no_credit_note(self):
        reply = build_fallback_reply(PARENT, None, [], [], None, "HTTP 529: overloaded")
        assert "Add credits" not in reply
        assert "No results or context rows" in reply

    def test_low_credit_detection(self):
        assert is_low_credit_error("credit balance too low")
        assert not is_low_credit_error(None)
        assert not is_low_credit_error("rate limited")

    def test_truncate(self):
        assert truncate("  short  ", 10) == "short"
        assert truncate("abcdef", 3) == "abc…"
