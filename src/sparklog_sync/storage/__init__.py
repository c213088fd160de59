"""Storage layer for the Sparklog sync engine."""

from sparklog_sync.storage.content_parser import (
    ParsedContent,
    build_note,
    note_id_from_path,
    parse_note_content,
    render_note_content,
)
from sparklog_sync.storage.kv_store import InMemoryStore, KeyValueStore, SqliteStore

__all__ = [
    "ParsedContent",
    "build_note",
    "note_id_from_path",
    "parse_note_content",
    "render_note_content",
    "KeyValueStore",
    "InMemoryStore",
    "SqliteStore",
]
