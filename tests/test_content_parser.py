"""Tests for note file parsing and rendering."""
import datetime

from sparklog_sync.storage.content_parser import (
    build_note,
    format_tags,
    make_preview,
    note_id_from_path,
    parse_note_content,
    render_note_content,
)

NOTE = """---
created_at: 2024-05-01T10:00:00Z
updated_at: 2024-05-02T11:30:00Z
private: true
tags: [reading, books]
---

First line of the note.
"""


class TestParseNoteContent:
    """Tests for metadata extraction."""

    def test_parses_frontmatter_fields(self):
        parsed = parse_note_content(NOTE, "2024-05-01-10-00-00.md")
        assert parsed.title == "2024-05-01-10-00-00"
        assert parsed.created_at == datetime.datetime(
            2024, 5, 1, 10, 0, tzinfo=datetime.timezone.utc
        )
        assert parsed.updated_at == datetime.datetime(
            2024, 5, 2, 11, 30, tzinfo=datetime.timezone.utc
        )
        assert parsed.is_private is True
        assert parsed.tags == ["reading", "books"]
        assert parsed.content_preview == "First line of the note."

    def test_no_frontmatter_uses_defaults(self):
        parsed = parse_note_content("Just a body", "n1.md")
        assert parsed.created_at is None
        assert parsed.updated_at is None
        assert parsed.is_private is False
        assert parsed.tags == []
        assert parsed.body == "Just a body"

    def test_malformed_yaml_falls_back_to_line_scan(self):
        content = "---\ntags: [a, b\nprivate: true\n---\nbody"
        parsed = parse_note_content(content, "n1.md")
        assert parsed.is_private is True
        assert parsed.tags == ["a", "b"]
        assert parsed.body == "body"

    def test_invalid_timestamp_is_none(self):
        content = "---\ncreated_at: not a date\n---\nbody"
        parsed = parse_note_content(content, "n1.md")
        assert parsed.created_at is None

    def test_duplicate_and_blank_tags_are_dropped(self):
        content = "---\ntags: [x, , y, x]\n---\nbody"
        assert parse_note_content(content, "n1.md").tags == ["x", "y"]

    def test_quoted_private_flag(self):
        content = '---\nprivate: "true"\n---\nbody'
        assert parse_note_content(content, "n1.md").is_private is True

    def test_empty_content(self):
        parsed = parse_note_content("", "n1.md")
        assert parsed.content_preview == ""
        assert parsed.tags == []


class TestPreview:
    """Tests for the bounded preview."""

    def test_short_body_unchanged(self):
        assert make_preview("  hello  ") == "hello"

    def test_long_body_truncated_with_ellipsis(self):
        preview = make_preview("a" * 250, length=200)
        assert preview == "a" * 200 + "..."


class TestHelpers:
    def test_note_id_from_path(self):
        assert note_id_from_path("notes/2024-05-01-10-00-00.md") == "2024-05-01-10-00-00"
        assert note_id_from_path("plain") == "plain"

    def test_format_tags(self):
        assert format_tags(["a", "b", "a"]) == "[a, b]"
        assert format_tags([]) == "[]"


class TestRenderAndBuild:
    """Rendering produces frontmatter the parser reads back."""

    def test_rendered_note_parses_back(self):
        created = datetime.datetime(2024, 5, 1, 10, 0, tzinfo=datetime.timezone.utc)
        updated = created + datetime.timedelta(hours=1)
        text = render_note_content(
            "  Body text  ", is_private=True, tags=["x", "y"],
            created_at=created, updated_at=updated,
        )
        parsed = parse_note_content(text, "n1.md")
        assert parsed.created_at == created
        assert parsed.updated_at == updated
        assert parsed.is_private is True
        assert parsed.tags == ["x", "y"]
        assert parsed.body == "Body text"

    def test_created_defaults_to_updated(self):
        updated = datetime.datetime(2024, 5, 1, tzinfo=datetime.timezone.utc)
        text = render_note_content("b", updated_at=updated)
        parsed = parse_note_content(text, "n1.md")
        assert parsed.created_at == parsed.updated_at == updated

    def test_build_note_fills_fields(self):
        note = build_note("n1", NOTE, sha="abc", notes_dir="notes")
        assert note.id == "n1"
        assert note.name == "n1.md"
        assert note.path == "notes/n1.md"
        assert note.sha == "abc"
        assert note.tags == ["reading", "books"]
        assert note.is_private is True
        assert note.size == len(NOTE.encode("utf-8"))

    def test_build_note_missing_timestamps_use_now(self):
        now = datetime.datetime(2024, 6, 1, tzinfo=datetime.timezone.utc)
        note = build_note("n1", "body only", now=now)
        assert note.created_at == now
        assert note.updated_at == now
