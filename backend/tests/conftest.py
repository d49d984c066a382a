"""Shared fixtures: settings, an in-memory row store and a scripted model."""

from datetime import datetime, timezone
from typing import Any

import pytest

from sogood.config import Settings
from sogood.services.anthropic_client import CompletionResult
from sogood_models import ConversationRecord


def ts(day: int, hour: int = 12) -> str:
    """ISO timestamp on a day of January 2025."""
    return datetime(2025, 1, day, hour, tzinfo=timezone.utc).isoformat()


def _row_matches(row: ConversationRecord, filters: dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key == "or":
            clauses = value.strip("()").split(",")
            options = []
            for clause in clauses:
                column, _, expected = clause.partition(".eq.")
                options.append((column, expected.strip('"')))
            if not any(getattr(row, column) == expected for column, expected in options):
                return False
        elif value.startswith("eq."):
            if getattr(row, key) != value[3:]:
                return False
        elif value.startswith("neq."):
            if getattr(row, key) == value[4:]:
                return False
    return True


class FakeStore:
    """In-memory stand-in for RagStore with PostgREST filter semantics."""

    def __init__(self, rows: list[dict] | None = None):
        self.rows = [ConversationRecord.model_validate(r) for r in rows or []]
        self.selects: list[dict[str, Any]] = []
        self.deletes: list[dict[str, Any]] = []
        self.upserts: list[dict[str, Any]] = []
        self.missing_reads = 0

    async def select(self, filters, columns=None, order=None, limit=None):
        self.selects.append(dict(filters))
        rows = [r for r in self.rows if _row_matches(r, filters)]
        if order:
            rows.sort(key=lambda r: r.created_at_ms, reverse=order.endswith(".desc"))
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def get_row(self, row_id):
        if self.missing_reads:
            self.missing_reads -= 1
            return None
        rows = await self.select({"id": f"eq.{row_id}"}, limit=1)
        return rows[0] if rows else None

    async def upsert(self, row):
        self.upserts.append(row)
        record = ConversationRecord.model_validate(row)
        self.rows = [r for r in self.rows if r.id != record.id] + [record]
        return record

    async def delete(self, filters):
        self.deletes.append(dict(filters))
        self.rows = [r for r in self.rows if not _row_matches(r, filters)]


class ScriptedLLM:
    """Returns queued completion results and records every call."""

    def __init__(self, *results: CompletionResult | str):
        self.results = [CompletionResult(text=r) if isinstance(r, str) else r for r in results]
        self.calls: list[tuple[str, list]] = []

    async def complete(self, system, turns, max_tokens=None, temperature=None):
        self.calls.append((system, list(turns)))
        if not self.results:
            return CompletionResult(error="No scripted response left")
        return self.results.pop(0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon-key",
        anthropic_api_key="sk-ant-test",
        store_read_retry_delay_ms=0,
    )


@pytest.fixture
def acme_rows() -> list[dict]:
    """A chat row for acme plus sibling rows stored with inconsistent URLs."""
    return [
        {
            "id": "c1",
            "company": "https://acme.com/",
            "type": "results",
            "social_entry": "https://acme.com/",
            "title": "Acme",
            "messages": [],
            "created_at": ts(1),
        },
        {
            "id": "r1",
            "company": "https://acme.com",
            "type": "results",
            "title": "Acme posts",
            "context": "Post one about widgets",
            "created_at": ts(2),
        },
        {
            "id": "x1",
            "company": "https://acme.com/",
            "type": "context",
            "title": "Brand voice",
            "context": "Friendly and direct",
            "created_at": ts(3),
        },
        {
            "id": "o1",
            "company": "https://other.com/",
            "type": "results",
            "title": "Other",
            "context": "Unrelated",
            "created_at": ts(4),
        },
    ]
