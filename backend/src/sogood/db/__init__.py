"""Row store access."""

from sogood.db.rest import RagStore, ROW_COLUMNS, SNIPPET_COLUMNS

__all__ = ["RagStore", "ROW_COLUMNS", "SNIPPET_COLUMNS"]
