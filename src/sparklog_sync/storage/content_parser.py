"""Parsing and rendering of note files.

A note file is markdown with a YAML frontmatter block::

    ---
    created_at: 2024-05-01T10:00:00Z
    updated_at: 2024-05-01T10:00:00Z
    private: false
    tags: [reading, books]
    ---

    Body text...

Parsing is pure and lenient: malformed frontmatter falls back to a line
scan, and missing fields come back as ``None`` or defaults, never errors.
Both the draft log and the merge use this module, so a draft and a
snapshot entry for the same file agree on metadata.
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import frontmatter
import yaml

from sparklog_sync.models.schema import Note, dedupe_tags, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200
NOTE_SUFFIX = ".md"


@dataclass
class ParsedContent:
    """Structured metadata extracted from a raw note file."""

    title: str
    content_preview: str
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    is_private: bool = False
    tags: List[str] = field(default_factory=list)
    body: str = ""


def note_id_from_path(path: str) -> str:
    """``notes/2024-05-01-10-00-00.md`` -> ``2024-05-01-10-00-00``."""
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    if name.endswith(NOTE_SUFFIX):
        name = name[: -len(NOTE_SUFFIX)]
    return name


def make_preview(body: str, length: int = PREVIEW_LENGTH) -> str:
    """First ``length`` characters of the stripped body, ``...`` if cut."""
    text = body.strip()
    if len(text) > length:
        return text[:length] + "..."
    return text


def _parse_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return dedupe_tags([str(t) for t in value])
    text = str(value).replace('"', "").strip()
    text = text.removeprefix("[").removesuffix("]")
    return dedupe_tags(text.split(","))


def _parse_private(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).replace('"', "").strip() == "true"


def _scan_frontmatter(content: str) -> Tuple[Dict[str, str], str]:
    """Line-based fallback for frontmatter YAML cannot load.

    Each ``key: value`` line is split on its first colon.
    """
    lines = content.split("\n")
    metadata: Dict[str, str] = {}
    in_frontmatter = False
    end_index = -1
    for i, raw in enumerate(lines):
        line = raw.strip()
        if line == "---" and not in_frontmatter:
            in_frontmatter = True
            continue
        if line == "---" and in_frontmatter:
            end_index = i
            break
        if in_frontmatter and ":" in line:
            key, value = line.split(":", 1)
            metadata[key.strip()] = value.strip()
    body_lines = lines[end_index + 1 :] if end_index >= 0 else lines
    if end_index < 0:
        metadata = {}
    return metadata, "\n".join(body_lines)


def _split_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    try:
        post = frontmatter.loads(content)
        metadata = post.metadata
        if not isinstance(metadata, dict):
            raise ValueError("frontmatter is not a mapping")
        return metadata, post.content
    except (yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Falling back to line scan for frontmatter: {e}")
        return _scan_frontmatter(content)


def parse_note_content(
    content: str, filename: str, preview_length: int = PREVIEW_LENGTH
) -> ParsedContent:
    """Extract timestamps, visibility, tags and a preview from a note file.

    Args:
        content: Raw file text, frontmatter included.
        filename: File name; its stem becomes the title.
        preview_length: Maximum preview length before ``...`` is appended.
    """
    metadata, body = _split_frontmatter(content or "")
    return ParsedContent(
        title=note_id_from_path(filename),
        content_preview=make_preview(body, preview_length),
        created_at=parse_timestamp(metadata.get("created_at")),
        updated_at=parse_timestamp(metadata.get("updated_at")),
        is_private=_parse_private(metadata.get("private", False)),
        tags=_parse_tags(metadata.get("tags")),
        body=body.strip(),
    )


def build_note(
    note_id: str,
    content: str,
    sha: Optional[str] = None,
    notes_dir: str = "notes",
    preview_length: int = PREVIEW_LENGTH,
    now: Optional[datetime.datetime] = None,
) -> Note:
    """Build a full Note from raw file text.

    Missing timestamps default to now, matching what the snapshot build
    would stamp on a freshly written file.
    """
    name = f"{note_id}{NOTE_SUFFIX}"
    parsed = parse_note_content(content, name, preview_length)
    now = now or utc_now()
    return Note(
        id=note_id,
        name=name,
        path=f"{notes_dir}/{name}",
        sha=sha,
        title=parsed.title,
        content=content,
        content_preview=parsed.content_preview,
        created_at=parsed.created_at or now,
        updated_at=parsed.updated_at or now,
        is_private=parsed.is_private,
        tags=parsed.tags,
        size=len(content.encode("utf-8")),
    )


def format_tags(tags: List[str]) -> str:
    """Inline YAML flow list: ``[a, b]``; ``[]`` when empty."""
    return f"[{', '.join(dedupe_tags(tags))}]"


def render_note_content(
    content: str,
    is_private: bool = False,
    tags: Optional[List[str]] = None,
    created_at: Optional[datetime.datetime] = None,
    updated_at: Optional[datetime.datetime] = None,
) -> str:
    """Serialize a note body and its metadata into file text.

    Args:
        content: Markdown body (frontmatter-free).
        is_private: Visibility flag.
        tags: Tag names.
        created_at: Original creation time; defaults to ``updated_at``.
        updated_at: Modification time; defaults to now.
    """
    updated = updated_at or utc_now()
    created = created_at or updated
    return (
        "---\n"
        f"created_at: {created.isoformat()}\n"
        f"updated_at: {updated.isoformat()}\n"
        f"private: {'true' if is_private else 'false'}\n"
        f"tags: {format_tags(tags or [])}\n"
        "---\n\n"
        f"{content.strip()}\n"
    )
