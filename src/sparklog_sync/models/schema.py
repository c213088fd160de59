"""Data models for the Sparklog sync engine."""

import datetime
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC."""
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime.

    Returns None for empty or unparseable values instead of raising, since
    timestamps in note frontmatter and snapshot payloads are advisory.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return ensure_timezone_aware(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip().strip('"').strip("'")
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_timezone_aware(datetime.datetime.fromisoformat(text))
    except ValueError:
        return None


_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=timezone.utc)


def recency_key(note: "Note") -> datetime.datetime:
    """Sort key for newest-first ordering: updated, else created, else epoch."""
    return note.updated_at or note.created_at or _EPOCH


def dedupe_tags(tags: List[str]) -> List[str]:
    """Strip, drop blanks and remove duplicates, keeping first occurrence."""
    seen = set()
    result = []
    for tag in tags:
        name = str(tag).strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


class DraftOperation(str, Enum):
    """Kinds of pending local mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Note(BaseModel):
    """A note as surfaced to the list view.

    ``id`` is the filename without ``.md``. ``sha`` is the remote blob hash
    used as version token for optimistic concurrency.
    """

    id: str = Field(..., description="Note identifier (filename stem)")
    name: str = Field(default="", description="Filename, e.g. 2024-01-01-10-00-00.md")
    path: str = Field(default="", description="Path inside the remote repository")
    sha: Optional[str] = Field(default=None, description="Version token")
    title: str = Field(default="", description="Display title")
    content: str = Field(default="", description="Raw note file including frontmatter")
    content_preview: str = Field(
        default="",
        validation_alias=AliasChoices("content_preview", "contentPreview"),
        description="Bounded body preview",
    )
    created_at: Optional[datetime.datetime] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdDate")
    )
    updated_at: Optional[datetime.datetime] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedDate")
    )
    is_private: bool = Field(
        default=False, validation_alias=AliasChoices("is_private", "isPrivate")
    )
    tags: List[str] = Field(default_factory=list)
    size: Optional[int] = Field(default=None)
    compiled_at: Optional[datetime.datetime] = Field(
        default=None,
        validation_alias=AliasChoices("compiled_at", "compiledAt"),
        description="When the snapshot compiled this note",
    )
    is_draft: bool = Field(default=False, description="Surfaced from a pending draft")

    model_config = {"validate_assignment": True, "populate_by_name": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the identifier is usable as a storage key."""
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        if "/" in v or "\\" in v:
            raise ValueError("Note ID cannot contain path separators")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Tags are a set: duplicates and blanks are dropped."""
        return dedupe_tags(v)

    @field_validator("created_at", "updated_at", "compiled_at", mode="before")
    @classmethod
    def validate_timestamps(cls, v: Any) -> Optional[datetime.datetime]:
        """Accept ISO strings (``Z`` suffix included) and naive datetimes."""
        return parse_timestamp(v)

    @property
    def cache_key(self) -> str:
        """Key used by the edit cache: version token, else path, else name."""
        return self.sha or self.path or self.name or self.id


class NoteMetadata(Note):
    """A snapshot entry for one note.

    Index entries omit ``content`` to bound payload size; per-note payloads
    include it.
    """

    filename: str = Field(default="")


class SnapshotIndex(BaseModel):
    """The compiled read model published by the build pipeline."""

    version: str = Field(default="1")
    compiled_at: Optional[datetime.datetime] = Field(
        default=None, validation_alias=AliasChoices("compiled_at", "compiledAt")
    )
    total_notes: int = Field(
        default=0, validation_alias=AliasChoices("total_notes", "totalNotes")
    )
    public_notes: int = Field(
        default=0, validation_alias=AliasChoices("public_notes", "publicNotes")
    )
    notes: Dict[str, NoteMetadata] = Field(default_factory=dict)

    @field_validator("compiled_at", mode="before")
    @classmethod
    def validate_compiled_at(cls, v: Any) -> Optional[datetime.datetime]:
        return parse_timestamp(v)

    def get(self, note_id: str) -> Optional[NoteMetadata]:
        """Look up an entry by note id or by filename."""
        entry = self.notes.get(note_id) or self.notes.get(f"{note_id}.md")
        if entry is not None:
            return entry
        for meta in self.notes.values():
            if meta.id == note_id:
                return meta
        return None


class DraftEntry(BaseModel):
    """One pending local mutation, persisted under ``draft_<note_id>``."""

    note_id: str
    operation: DraftOperation
    body: str = ""
    version_token: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utc_now)
    snapshot_compiled: bool = False
    note: Note

    @field_validator("created_at", mode="before")
    @classmethod
    def validate_created_at(cls, v: Any) -> datetime.datetime:
        parsed = parse_timestamp(v)
        if parsed is None:
            raise ValueError("Draft timestamp is required")
        return parsed

    def to_note(self) -> Note:
        """The representation surfaced by the merge while the draft is pending."""
        return self.note.model_copy(update={"is_draft": True})


class DraftStatusEntry(BaseModel):
    """Side-index value kept under ``draft_status`` for fast statistics."""

    operation: DraftOperation
    timestamp: datetime.datetime
    compiled: bool = False


class FileMeta(BaseModel):
    """A file listing entry from the remote store."""

    name: str
    path: str
    sha: str
    size: int = 0
    url: str = ""
    type: str = "file"


class BuildRun(BaseModel):
    """Outcome of the most recent build pipeline run."""

    status: str
    conclusion: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def validate_timestamps(cls, v: Any) -> Optional[datetime.datetime]:
        return parse_timestamp(v)


class BuildStatus(BaseModel):
    """Whether a snapshot build is running, and the last run's outcome."""

    is_running: bool = False
    last_run: Optional[BuildRun] = None


@dataclass
class CachedEdit:
    """An in-flight edit not yet reflected in the snapshot.

    Attributes:
        note: The edited note (or the final note once the build completed).
        original: The pre-edit note, used to hide it from merged lists.
        building: True while the snapshot build for this edit is pending.
        build_started_at: When the build was requested; None once settled.
        cached_at: Insert time, preserved across build completion for TTL.
        is_cached: False once the payload was replaced by the built note.
        key: Cache key taken from the edited note at insert time. It does
            not follow the payload, since the built note may carry a
            different version token.
    """

    note: Note
    original: Optional[Note] = None
    building: bool = True
    build_started_at: Optional[datetime.datetime] = None
    cached_at: datetime.datetime = field(default_factory=utc_now)
    is_cached: bool = True
    key: str = ""

    def __post_init__(self) -> None:
        if not self.key:
            self.key = self.note.cache_key


@dataclass
class CacheStats:
    """Counts of edit cache entries by state."""

    total_cached: int
    building: int
    completed: int
    failed: int


@dataclass
class DraftStats:
    """Counts of pending drafts by operation."""

    total: int
    creates: int
    updates: int
    deletes: int


@dataclass(frozen=True)
class PersistOk:
    """A local write succeeded."""

    key: str
    ok: Literal[True] = True


@dataclass(frozen=True)
class PersistenceFailed:
    """A local write failed; prior state is unchanged."""

    key: str
    error: str
    ok: Literal[False] = False


PersistResult = Union[PersistOk, PersistenceFailed]


class SnapshotState(str, Enum):
    """Outcome of a point read against the snapshot."""

    FOUND = "found"
    ABSENT = "absent"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SnapshotProbe:
    """Result of ``SnapshotClient.probe_note``.

    ``ABSENT`` means the endpoint answered 404; ``UNAVAILABLE`` means the
    read itself failed, so nothing is known about the note.
    """

    state: SnapshotState
    note: Optional[NoteMetadata] = None
