"""In-memory overlay of recent edits awaiting a snapshot build.

Right after a write, the remote store already has the new content but the
snapshot does not. The edit cache keeps the edited note (and the note it
replaced) so list views show the edit immediately, then keeps the built
note around until its entry ages out.

Entries are keyed by version token, falling back to path and filename.
"""
import datetime
import logging
from typing import Dict, List, Optional, Set

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.models.schema import CachedEdit, CacheStats, Note, recency_key, utc_now
from sparklog_sync.services.ports import Clock
from sparklog_sync.storage.content_parser import make_preview

logger = logging.getLogger(__name__)


class EditCache:
    """Recent edits, overlaid on whatever list the snapshot produced."""

    def __init__(
        self,
        clock: Clock = utc_now,
        cache_ttl: Optional[datetime.timedelta] = None,
        build_timeout: Optional[datetime.timedelta] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        self._clock = clock
        self._cache_ttl = cache_ttl or datetime.timedelta(seconds=cfg.cache_ttl_seconds)
        self._build_timeout = build_timeout or datetime.timedelta(
            seconds=cfg.build_timeout_seconds
        )
        self._preview_length = cfg.preview_length
        self._entries: Dict[str, CachedEdit] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def cache_edit(self, edited: Note, original: Optional[Note] = None) -> CachedEdit:
        """Insert or overwrite the entry for ``edited`` as building."""
        now = self._clock()
        entry = CachedEdit(
            note=edited,
            original=original,
            building=True,
            build_started_at=now,
            cached_at=now,
            is_cached=True,
            key=edited.cache_key,
        )
        self._entries[entry.key] = entry
        logger.debug(f"Cached edit {entry.key} (note {edited.id})")
        return entry

    def mark_build_completed(self, key: str, final_note: Note) -> bool:
        """Replace the payload with the built note.

        ``cached_at`` and ``original`` are kept so the entry still ages out
        on its original schedule and still hides the pre-edit note.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.note = final_note
        entry.building = False
        entry.build_started_at = None
        entry.is_cached = False
        logger.info(f"Build completed for {key}")
        return True

    def update_build_status(self, key: str, building: bool) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.building = building
        entry.build_started_at = self._clock() if building else None
        return True

    def update_content(self, key: str, content: str, preview: Optional[str] = None) -> bool:
        """Swap in new content for a cached note, keeping its build state."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.note = entry.note.model_copy(
            update={
                "content": content,
                "content_preview": preview
                if preview is not None
                else make_preview(content, self._preview_length),
                "updated_at": self._clock(),
            }
        )
        return True

    def get(self, key: str) -> Optional[CachedEdit]:
        return self._entries.get(key)

    def get_by_note(self, note: Note) -> Optional[CachedEdit]:
        """Entry whose note or original matches ``note`` by key or id."""
        entry = self._entries.get(note.cache_key)
        if entry is not None:
            return entry
        for entry in self._entries.values():
            if entry.note.id == note.id or entry.note.cache_key == note.cache_key:
                return entry
            if entry.original is not None and entry.original.cache_key == note.cache_key:
                return entry
        return None

    def is_cached(self, key: str) -> bool:
        return key in self._entries

    def is_building(self, key: str) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.building)

    def has_building_entries(self) -> bool:
        return any(entry.building for entry in self._entries.values())

    def building_entries(self) -> List[CachedEdit]:
        return [entry for entry in self._entries.values() if entry.building]

    def all_entries(self) -> List[CachedEdit]:
        return list(self._entries.values())

    def remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def remove_by_note(self, note: Note) -> bool:
        entry = self.get_by_note(note)
        if entry is None:
            return False
        self._entries.pop(entry.key, None)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def merge_with_notes(self, base: List[Note]) -> List[Note]:
        """Overlay cached edits on ``base``, newest first.

        A cached note hides base notes sharing its key, its id, or the key
        of the note it replaced.
        """
        covered_keys: Set[str] = set()
        covered_ids: Set[str] = set()
        merged: List[Note] = []
        for entry in self._entries.values():
            if entry.key in covered_keys:
                continue
            merged.append(entry.note)
            covered_keys.add(entry.key)
            covered_keys.add(entry.note.cache_key)
            covered_ids.add(entry.note.id)
            if entry.original is not None:
                covered_keys.add(entry.original.cache_key)

        for note in base:
            if note.cache_key in covered_keys or note.id in covered_ids:
                continue
            merged.append(note)

        merged.sort(key=recency_key, reverse=True)
        return merged

    def stats(self) -> CacheStats:
        """Counts by state; ``failed`` are builds past the timeout."""
        now = self._clock()
        building = [e for e in self._entries.values() if e.building]
        failed = [
            e
            for e in building
            if e.build_started_at is not None
            and now - e.build_started_at > self._build_timeout
        ]
        return CacheStats(
            total_cached=len(self._entries),
            building=len(building) - len(failed),
            completed=len(self._entries) - len(building),
            failed=len(failed),
        )

    def size_estimate(self) -> Dict[str, float]:
        """Entry count and a rough memory footprint in KiB."""
        size = sum(
            len(entry.note.content) + len(entry.note.content_preview) + 512
            for entry in self._entries.values()
        )
        return {"count": len(self._entries), "estimated_kb": round(size / 1024, 2)}

    def tick(self) -> int:
        """Purge aged-out entries and builds stuck past the timeout."""
        now = self._clock()
        expired = []
        for key, entry in self._entries.items():
            if now - entry.cached_at > self._cache_ttl:
                expired.append(key)
            elif (
                entry.building
                and entry.build_started_at is not None
                and now - entry.build_started_at > self._build_timeout
            ):
                logger.warning(f"Build for {key} timed out, dropping cached edit")
                expired.append(key)
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} edit cache entries")
        return len(expired)
