"""Merging drafts, the snapshot and the edit cache into one note list."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Set

from sparklog_sync.models.schema import DraftEntry, DraftOperation, Note, utc_now
from sparklog_sync.observability import (
    BUILD_COMPLETED,
    BUILD_FAILED,
    atraced,
    record_event,
)
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.edit_cache import EditCache
from sparklog_sync.services.ports import BuildPipeline, Clock, SnapshotSource

logger = logging.getLogger(__name__)


def _matches(note: Note, draft: DraftEntry, by_token: bool) -> bool:
    if note.id == draft.note_id:
        return True
    return by_token and bool(draft.version_token) and note.sha == draft.version_token


class Reconciler:
    """Produces the list a user sees from the three tiers of note state.

    Drafts win over snapshot data for the same note until the snapshot is
    observed to have caught up, at which point the draft is retired.
    """

    def __init__(self, draft_log: DraftLog, edit_cache: Optional[EditCache] = None):
        self._drafts = draft_log
        self._edit_cache = edit_cache

    @atraced("merge_with_snapshot")
    async def merge_with_snapshot(self, snapshot_notes: List[Note]) -> List[Note]:
        """Apply pending drafts to ``snapshot_notes``.

        Drafts are visited newest first. A caught-up draft leaves the
        snapshot entry alone; otherwise a create replaces or prepends, an
        update replaces the entry matching by id or version token (else
        prepends), and a delete drops matching entries.

        Returns a new list; ``snapshot_notes`` is not modified.
        """
        working = list(snapshot_notes)
        seen: Set[str] = set()

        for draft in self._drafts.get_all_drafts():
            if draft.note_id in seen:
                continue
            seen.add(draft.note_id)

            if await self._drafts.check_snapshot_caught_up(
                draft.note_id, draft.created_at, draft.operation
            ):
                continue

            surfaced = draft.to_note()
            if draft.operation is DraftOperation.CREATE:
                working = self._replace_or_prepend(working, draft, surfaced, by_token=False)
            elif draft.operation is DraftOperation.UPDATE:
                working = self._replace_or_prepend(working, draft, surfaced, by_token=True)
            else:
                working = [n for n in working if not _matches(n, draft, by_token=True)]

        return working

    @staticmethod
    def _replace_or_prepend(
        working: List[Note], draft: DraftEntry, surfaced: Note, by_token: bool
    ) -> List[Note]:
        for i, note in enumerate(working):
            if _matches(note, draft, by_token):
                return working[:i] + [surfaced] + working[i + 1 :]
        return [surfaced] + working

    async def list_notes(self, snapshot_notes: List[Note]) -> List[Note]:
        """Merge drafts, then layer in-flight edits from the edit cache."""
        merged = await self.merge_with_snapshot(snapshot_notes)
        if self._edit_cache is None:
            return merged
        return self._edit_cache.merge_with_notes(merged)


@dataclass
class SweepCounts:
    settled: int = 0
    edits_purged: int = 0
    drafts_removed: int = 0


class BuildMonitor:
    """Polls the build pipeline while cached edits wait for a snapshot.

    The host calls ``tick()`` on its own schedule, every
    ``sweep_interval_seconds`` by default; nothing here starts a timer.
    Without a pipeline only the Edit Cache and Draft Log sweeps run.
    """

    def __init__(
        self,
        edit_cache: EditCache,
        draft_log: DraftLog,
        pipeline: Optional[BuildPipeline],
        snapshot: SnapshotSource,
        clock: Clock = utc_now,
    ) -> None:
        self._edit_cache = edit_cache
        self._drafts = draft_log
        self._pipeline = pipeline
        self._snapshot = snapshot
        self._clock = clock

    async def _settle_building_entries(self) -> int:
        status = await self._pipeline.status()
        if status.is_running or status.last_run is None:
            return 0

        conclusion = status.last_run.conclusion
        settled = 0
        for entry in self._edit_cache.building_entries():
            if conclusion == "failure":
                self._edit_cache.update_build_status(entry.key, False)
                settled += 1
                continue
            if conclusion != "success":
                continue
            built = await self._snapshot.get_note(entry.note.id)
            if built is None or built.compiled_at is None:
                continue
            if entry.build_started_at is None or built.compiled_at > entry.build_started_at:
                self._edit_cache.mark_build_completed(entry.key, built)
                settled += 1

        if not settled:
            return 0
        if conclusion == "failure":
            logger.warning(f"Snapshot build failed; {settled} edits no longer building")
            record_event(BUILD_FAILED, settled)
        else:
            logger.info(f"Snapshot build landed for {settled} edits")
            record_event(BUILD_COMPLETED, settled)
        return settled

    async def sweep(self) -> SweepCounts:
        """One polling round plus the Edit Cache and Draft Log sweeps."""
        counts = SweepCounts()
        if self._pipeline is not None and self._edit_cache.has_building_entries():
            counts.settled = await self._settle_building_entries()
        counts.edits_purged = self._edit_cache.tick()
        counts.drafts_removed = self._drafts.tick()
        return counts

    async def tick(self) -> int:
        """Run ``sweep``; returns how many cached edits settled."""
        return (await self.sweep()).settled
