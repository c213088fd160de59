"""Durable log of pending local mutations.

A draft records a create, update or delete that was issued locally but is
not yet reflected in the compiled snapshot. Drafts are keyed by note id, so
a newer mutation of the same note replaces the older one, and they expire
after a fixed TTL so a build that never lands cannot pin a stale note in
the list forever.

Besides one ``draft_<note_id>`` entry per note, a ``draft_status`` side
index holds operation, timestamp and compiled flag per note so statistics
do not need to deserialize every entry.
"""
import datetime
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.exceptions import ErrorCode, SparklogError, ValidationError
from sparklog_sync.models.schema import (
    DraftEntry,
    DraftOperation,
    DraftStats,
    DraftStatusEntry,
    Note,
    PersistenceFailed,
    PersistOk,
    PersistResult,
    SnapshotState,
    utc_now,
)
from sparklog_sync.observability import (
    CATCHUP_HIT,
    CATCHUP_MISS,
    CATCHUP_UNAVAILABLE,
    DRAFT_EXPIRED,
    DRAFT_RETIRED,
    record_event,
    traced,
)
from sparklog_sync.services.ports import Clock, SnapshotSource
from sparklog_sync.storage.content_parser import NOTE_SUFFIX, build_note
from sparklog_sync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

STATUS_SUFFIX = "status"


@dataclass
class _ProbeBackoff:
    failures: int
    next_attempt: datetime.datetime


class DraftLog:
    """Pending local mutations, persisted in a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        snapshot: Optional[SnapshotSource] = None,
        clock: Clock = utc_now,
        ttl: Optional[datetime.timedelta] = None,
        key_prefix: Optional[str] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        self._store = store
        self._snapshot = snapshot
        self._clock = clock
        self._ttl = ttl or datetime.timedelta(seconds=cfg.draft_ttl_seconds)
        self._prefix = key_prefix or cfg.draft_key_prefix
        self._status_key = f"{self._prefix}{STATUS_SUFFIX}"
        self._notes_dir = cfg.notes_dir.strip("/")
        self._preview_length = cfg.preview_length
        self._backoff_base = cfg.catchup_backoff_base_seconds
        self._backoff_max = cfg.catchup_backoff_max_seconds
        self._probe_backoff: Dict[str, _ProbeBackoff] = {}
        self.clean_expired_drafts()

    @property
    def ttl(self) -> datetime.timedelta:
        return self._ttl

    def _key(self, note_id: str) -> str:
        return f"{self._prefix}{note_id}"

    def _is_expired(self, entry: DraftEntry, now: datetime.datetime) -> bool:
        return now - entry.created_at > self._ttl

    def _draft_ids(self) -> Optional[List[str]]:
        """Note ids with a stored draft, or None if the store cannot be listed."""
        try:
            keys = self._store.keys()
        except SparklogError as e:
            logger.error(f"Failed to enumerate drafts: {e}")
            return None
        return [
            key[len(self._prefix) :]
            for key in keys
            if key.startswith(self._prefix) and key != self._status_key
        ]

    # -- side index ---------------------------------------------------------

    def _read_status(self) -> Optional[Dict[str, DraftStatusEntry]]:
        """The side index; None when the store read itself failed."""
        try:
            raw = self._store.get(self._status_key)
        except SparklogError as e:
            logger.error(f"Failed to read draft status index: {e}")
            return None
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return {
                note_id: DraftStatusEntry.model_validate(value)
                for note_id, value in data.items()
            }
        except (json.JSONDecodeError, AttributeError, PydanticValidationError) as e:
            # Rebuilt from the entries on the next sweep
            logger.warning(f"Discarding corrupt draft status index: {e}")
            return {}

    def _load_status(self) -> Dict[str, DraftStatusEntry]:
        return self._read_status() or {}

    def _save_status(self, status: Dict[str, DraftStatusEntry]) -> None:
        payload = {
            note_id: json.loads(entry.model_dump_json())
            for note_id, entry in status.items()
        }
        self._store.set(self._status_key, json.dumps(payload))

    def _update_status(self, note_id: str, entry: Optional[DraftStatusEntry]) -> None:
        status = self._read_status()
        if status is None:
            return
        try:
            if entry is None:
                if note_id not in status:
                    return
                del status[note_id]
            else:
                status[note_id] = entry
            self._save_status(status)
        except SparklogError as e:
            logger.warning(f"Failed to update draft status index for {note_id}: {e}")

    # -- writes -------------------------------------------------------------

    def _build_entry(
        self,
        note_id: str,
        body: str,
        operation: DraftOperation,
        version_token: Optional[str],
        now: datetime.datetime,
    ) -> DraftEntry:
        if note_id == STATUS_SUFFIX:
            raise ValidationError(
                f"'{STATUS_SUFFIX}' is reserved and cannot be used as a note id",
                field="note_id",
                value=note_id,
                code=ErrorCode.DRAFT_INVALID_OPERATION,
            )
        if body:
            note = build_note(
                note_id,
                body,
                sha=version_token,
                notes_dir=self._notes_dir,
                preview_length=self._preview_length,
                now=now,
            )
        else:
            name = f"{note_id}{NOTE_SUFFIX}"
            note = Note(
                id=note_id,
                name=name,
                path=f"{self._notes_dir}/{name}",
                sha=version_token,
                title=note_id,
                created_at=now,
                updated_at=now,
            )
        return DraftEntry(
            note_id=note_id,
            operation=operation,
            body=body,
            version_token=version_token,
            created_at=now,
            note=note,
        )

    @traced("save_draft")
    def save_draft(
        self,
        note_id: str,
        body: str,
        operation: Union[DraftOperation, str],
        version_token: Optional[str] = None,
    ) -> PersistResult:
        """Record a pending mutation, replacing any earlier draft of the note.

        Never raises. A failed write is logged and returned as
        ``PersistenceFailed``; the previous entry, if any, is left intact.
        The result reflects the draft entry only: if the side-index write
        fails afterwards the draft still counts as saved, and the next
        ``clean_expired_drafts`` restores its status entry.
        """
        key = self._key(note_id)
        now = self._clock()
        try:
            op = DraftOperation(operation)
            entry = self._build_entry(note_id, body or "", op, version_token, now)
            self._store.set(key, entry.model_dump_json())
        except (SparklogError, ValueError) as e:
            logger.error(f"Failed to save draft for {note_id}: {e}")
            return PersistenceFailed(key=key, error=str(e))

        self._update_status(
            note_id, DraftStatusEntry(operation=op, timestamp=now, compiled=False)
        )
        self._probe_backoff.pop(note_id, None)
        logger.info(f"Saved {op.value} draft for {note_id}")
        return PersistOk(key=key)

    def remove_draft(self, note_id: str) -> None:
        """Delete a draft and its status entry. Missing drafts are ignored."""
        try:
            self._store.remove(self._key(note_id))
        except SparklogError as e:
            logger.error(f"Failed to remove draft for {note_id}: {e}")
            return
        self._update_status(note_id, None)
        self._probe_backoff.pop(note_id, None)
        logger.debug(f"Removed draft for {note_id}")

    def mark_compiled(self, note_id: str) -> PersistResult:
        """Flag a draft as seen in the snapshot without deleting it."""
        key = self._key(note_id)
        entry = self.get_draft(note_id)
        if entry is None:
            return PersistenceFailed(key=key, error="no pending draft")
        try:
            entry.snapshot_compiled = True
            self._store.set(key, entry.model_dump_json())
        except SparklogError as e:
            logger.error(f"Failed to mark draft {note_id} compiled: {e}")
            return PersistenceFailed(key=key, error=str(e))
        self._update_status(
            note_id,
            DraftStatusEntry(
                operation=entry.operation, timestamp=entry.created_at, compiled=True
            ),
        )
        return PersistOk(key=key)

    def clear_all_drafts(self) -> int:
        """Remove every draft and the status index. Returns entries removed."""
        ids = self._draft_ids() or []
        removed = 0
        try:
            for note_id in ids:
                self._store.remove(self._key(note_id))
                removed += 1
            self._store.remove(self._status_key)
        except SparklogError as e:
            logger.error(f"Failed to clear drafts after {removed} removals: {e}")
        self._probe_backoff.clear()
        logger.info(f"Cleared {removed} drafts")
        return removed

    # -- reads --------------------------------------------------------------

    def get_draft(self, note_id: str) -> Optional[DraftEntry]:
        """The pending draft for ``note_id``, or None.

        Expired and unreadable entries are removed as a side effect.
        """
        try:
            return self._fetch_draft(note_id)
        except SparklogError as e:
            logger.error(f"Failed to read draft for {note_id}: {e}")
            return None

    def _fetch_draft(self, note_id: str) -> Optional[DraftEntry]:
        raw = self._store.get(self._key(note_id))
        if raw is None:
            return None
        try:
            entry = DraftEntry.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"Removing corrupt draft for {note_id}: {e}")
            self.remove_draft(note_id)
            return None
        if self._is_expired(entry, self._clock()):
            logger.info(f"Draft for {note_id} expired, removing")
            self.remove_draft(note_id)
            return None
        return entry

    def get_all_drafts(self) -> List[DraftEntry]:
        """All live drafts, newest first. Empty if the store is unreadable."""
        drafts = []
        for note_id in self._draft_ids() or []:
            entry = self.get_draft(note_id)
            if entry is not None:
                drafts.append(entry)
        drafts.sort(key=lambda d: d.created_at, reverse=True)
        return drafts

    def has_draft(self, note_id: str) -> bool:
        return self.get_draft(note_id) is not None

    def get_draft_operation(self, note_id: str) -> Optional[DraftOperation]:
        entry = self.get_draft(note_id)
        return entry.operation if entry else None

    def get_draft_status(self, note_id: str) -> Optional[DraftStatusEntry]:
        return self._load_status().get(note_id)

    def get_draft_stats(self) -> DraftStats:
        """Counts by operation, taken from the status index."""
        now = self._clock()
        live = [
            entry
            for entry in self._load_status().values()
            if now - entry.timestamp <= self._ttl
        ]
        return DraftStats(
            total=len(live),
            creates=sum(1 for e in live if e.operation is DraftOperation.CREATE),
            updates=sum(1 for e in live if e.operation is DraftOperation.UPDATE),
            deletes=sum(1 for e in live if e.operation is DraftOperation.DELETE),
        )

    # -- snapshot catch-up --------------------------------------------------

    def _in_backoff(self, note_id: str, now: datetime.datetime) -> bool:
        state = self._probe_backoff.get(note_id)
        return state is not None and now < state.next_attempt

    def _record_probe_failure(self, note_id: str, now: datetime.datetime) -> None:
        state = self._probe_backoff.get(note_id)
        failures = state.failures + 1 if state else 1
        delay = min(self._backoff_base * (2 ** (failures - 1)), self._backoff_max)
        self._probe_backoff[note_id] = _ProbeBackoff(
            failures=failures,
            next_attempt=now + datetime.timedelta(seconds=delay),
        )
        logger.debug(
            f"Snapshot probe for {note_id} failed ({failures}x), retry in {delay:.0f}s"
        )

    async def check_snapshot_caught_up(
        self,
        note_id: str,
        draft_timestamp: datetime.datetime,
        operation: Optional[DraftOperation] = None,
    ) -> bool:
        """Whether the snapshot already reflects the draft for ``note_id``.

        Create and update are caught up once the snapshot holds the note
        compiled strictly after ``draft_timestamp``; delete once the
        snapshot answers 404 for it. A failed read never counts, and
        repeated failures back off exponentially per note.

        A caught-up draft is retired here, unless a newer draft for the
        same note was saved meanwhile.
        """
        if self._snapshot is None:
            return False
        now = self._clock()
        if self._in_backoff(note_id, now):
            return False

        op = operation or self.get_draft_operation(note_id) or DraftOperation.UPDATE
        probe = await self._snapshot.probe_note(note_id)
        if probe.state is SnapshotState.UNAVAILABLE:
            self._record_probe_failure(note_id, now)
            record_event(CATCHUP_UNAVAILABLE)
            return False
        self._probe_backoff.pop(note_id, None)

        if op is DraftOperation.DELETE:
            caught_up = probe.state is SnapshotState.ABSENT
        else:
            compiled_at = probe.note.compiled_at if probe.note else None
            caught_up = compiled_at is not None and compiled_at > draft_timestamp

        record_event(CATCHUP_HIT if caught_up else CATCHUP_MISS)
        if caught_up:
            current = self.get_draft(note_id)
            if current is not None and current.created_at <= draft_timestamp:
                logger.info(f"Snapshot caught up with {op.value} of {note_id}")
                self.remove_draft(note_id)
                record_event(DRAFT_RETIRED)
        return caught_up

    # -- maintenance --------------------------------------------------------

    def clean_expired_drafts(self) -> int:
        """Remove expired and corrupt drafts, then reconcile the status index.

        Status entries without a draft are pruned, and live drafts missing
        from the index (after a failed side-index write) are added back.
        """
        ids = self._draft_ids()
        if ids is None:
            return 0
        removed = 0
        live: Dict[str, DraftEntry] = {}
        for note_id in ids:
            try:
                entry = self._fetch_draft(note_id)
            except SparklogError as e:
                logger.error(f"Failed to read draft for {note_id}, skipping sweep: {e}")
                return removed
            if entry is None:
                removed += 1
            else:
                live[note_id] = entry

        status = self._read_status()
        if status is not None:
            changed = False
            for note_id in [n for n in status if n not in live]:
                del status[note_id]
                changed = True
            for note_id, entry in live.items():
                if note_id not in status:
                    status[note_id] = DraftStatusEntry(
                        operation=entry.operation,
                        timestamp=entry.created_at,
                        compiled=entry.snapshot_compiled,
                    )
                    changed = True
            if changed:
                try:
                    self._save_status(status)
                except SparklogError as e:
                    logger.warning(f"Failed to repair draft status index: {e}")
        if removed:
            logger.info(f"Cleaned {removed} expired drafts")
            record_event(DRAFT_EXPIRED, removed)
        return removed

    def tick(self) -> int:
        """Periodic sweep; returns the number of drafts removed."""
        return self.clean_expired_drafts()
