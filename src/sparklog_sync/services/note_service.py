"""Note mutations and listing on top of the reconciliation engine."""
import datetime
import logging
from typing import List, Optional

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.exceptions import ErrorCode, ValidationError
from sparklog_sync.models.schema import (
    DraftOperation,
    Note,
    PersistenceFailed,
    recency_key,
    utc_now,
)
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.edit_cache import EditCache
from sparklog_sync.services.ports import BuildPipeline, Clock, RemoteStore, SnapshotSource
from sparklog_sync.services.reconciler import Reconciler
from sparklog_sync.storage.content_parser import (
    NOTE_SUFFIX,
    build_note,
    note_id_from_path,
    render_note_content,
)

logger = logging.getLogger(__name__)


def new_note_id(now: datetime.datetime) -> str:
    """Timestamp id, e.g. ``2024-05-01-10-00-00-123`` (milliseconds last)."""
    return now.strftime("%Y-%m-%d-%H-%M-%S-") + f"{now.microsecond // 1000:03d}"


class NoteService:
    """Create, update, delete and list notes.

    Every write goes to the remote store and is mirrored into the draft log
    and the edit cache, so the change is visible before the snapshot build
    picks it up. Remote failures propagate to the caller; a draft saved
    before the failure stays pending.
    """

    def __init__(
        self,
        remote: RemoteStore,
        snapshot: SnapshotSource,
        draft_log: DraftLog,
        edit_cache: EditCache,
        pipeline: Optional[BuildPipeline] = None,
        clock: Clock = utc_now,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        self._remote = remote
        self._snapshot = snapshot
        self._drafts = draft_log
        self._edit_cache = edit_cache
        self._pipeline = pipeline
        self._clock = clock
        self._notes_dir = cfg.notes_dir.strip("/")
        self._preview_length = cfg.preview_length
        self.reconciler = Reconciler(draft_log, edit_cache)
        self._last_snapshot_notes: List[Note] = []

    def _path(self, note: Note) -> str:
        return note.path or f"{self._notes_dir}/{note.id}{NOTE_SUFFIX}"

    def _build(self, note_id: str, body: str, sha: Optional[str]) -> Note:
        return build_note(
            note_id,
            body,
            sha=sha,
            notes_dir=self._notes_dir,
            preview_length=self._preview_length,
            now=self._clock(),
        )

    @staticmethod
    def _require_token(note: Note, operation: str) -> str:
        if not note.sha:
            raise ValidationError(
                f"Cannot {operation} note {note.id} without a version token",
                field="sha",
                code=ErrorCode.NOTE_VALIDATION_FAILED,
            )
        return note.sha

    def _save_draft(
        self,
        note_id: str,
        body: str,
        operation: DraftOperation,
        version_token: Optional[str] = None,
    ) -> None:
        result = self._drafts.save_draft(note_id, body, operation, version_token)
        if isinstance(result, PersistenceFailed):
            # The remote write still goes ahead; only the local overlay is lost
            logger.warning(f"Draft for {note_id} not persisted: {result.error}")

    async def _trigger_build(self) -> bool:
        if self._pipeline is None:
            return False
        return await self._pipeline.trigger_build()

    async def create_note(
        self, content: str, is_private: bool = False, tags: Optional[List[str]] = None
    ) -> Note:
        """Write a new note file and register it as a pending create."""
        now = self._clock()
        note_id = new_note_id(now)
        body = render_note_content(content, is_private, tags, now, now)
        self._save_draft(note_id, body, DraftOperation.CREATE)

        path = f"{self._notes_dir}/{note_id}{NOTE_SUFFIX}"
        token = await self._remote.create(path, body)
        note = self._build(note_id, body, token)
        self._edit_cache.cache_edit(note)
        await self._trigger_build()
        logger.info(f"Created note {note_id}")
        return note

    async def update_note(
        self,
        note: Note,
        content: str,
        is_private: Optional[bool] = None,
        tags: Optional[List[str]] = None,
    ) -> Note:
        """Replace a note's content; conditional on its current version token."""
        token = self._require_token(note, "update")
        body = render_note_content(
            content,
            note.is_private if is_private is None else is_private,
            note.tags if tags is None else tags,
            note.created_at,
            self._clock(),
        )
        self._save_draft(note.id, body, DraftOperation.UPDATE, version_token=token)

        new_token = await self._remote.update(self._path(note), body, token)
        updated = self._build(note.id, body, new_token)
        self._edit_cache.cache_edit(updated, original=note)
        await self._trigger_build()
        logger.info(f"Updated note {note.id}")
        return updated

    async def delete_note(self, note: Note) -> None:
        """Delete a note file, then hide it until the snapshot drops it."""
        token = self._require_token(note, "delete")
        await self._remote.delete(self._path(note), token)
        self._save_draft(note.id, "", DraftOperation.DELETE, version_token=token)
        self._edit_cache.remove_by_note(note)
        await self._trigger_build()
        logger.info(f"Deleted note {note.id}")

    async def snapshot_notes(self, include_private: bool = False) -> List[Note]:
        """Snapshot entries newest first; the last good list if unavailable."""
        index = await self._snapshot.get_index()
        if index is None:
            logger.info("Snapshot unavailable, using last known list")
            return list(self._last_snapshot_notes)
        notes = sorted(
            (m for m in index.notes.values() if include_private or not m.is_private),
            key=recency_key,
            reverse=True,
        )
        self._last_snapshot_notes = notes
        return list(notes)

    async def list_notes(self, include_private: bool = False) -> List[Note]:
        """The merged view: snapshot, then drafts, then in-flight edits."""
        return await self.reconciler.list_notes(await self.snapshot_notes(include_private))

    async def fetch_remote_notes(self) -> List[Note]:
        """Read every note straight from the remote store, newest first.

        Used when private notes are needed, which the snapshot never holds.
        """
        files = await self._remote.list_files()
        contents = await self._remote.batch_get_content(files)
        notes = []
        for file in files:
            payload = contents.get(file.path)
            if payload is None:
                continue
            notes.append(
                self._build(
                    note_id_from_path(file.name),
                    payload.decode("utf-8", errors="replace"),
                    file.sha,
                ).model_copy(update={"path": file.path})
            )
        notes.sort(key=recency_key, reverse=True)
        return notes
