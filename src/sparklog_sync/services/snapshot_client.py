"""Client for the compiled snapshot (static JSON read endpoint).

The build pipeline publishes ``index.json`` plus one ``<id>.md.json`` per
public note. The snapshot is eventually consistent and may not exist yet,
so every read degrades to ``None`` instead of raising: a 404, a non-JSON
body (e.g. an SPA fallback page) or a network error all mean "not built".
"""
import datetime
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.exceptions import SnapshotUnavailableError
from sparklog_sync.models.schema import (
    Note,
    NoteMetadata,
    SnapshotIndex,
    SnapshotProbe,
    SnapshotState,
    recency_key,
)
from sparklog_sync.observability import atraced
from sparklog_sync.services.http import create_async_client
from sparklog_sync.storage.content_parser import NOTE_SUFFIX, note_id_from_path

logger = logging.getLogger(__name__)

INDEX_PATH = "index.json"
_NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


def _to_metadata(filename: str, payload: Dict[str, Any]) -> NoteMetadata:
    """Normalize a wire entry; the note id is always the filename stem."""
    filename = filename or payload.get("filename") or payload.get("path", "")
    filename = filename.rsplit("/", 1)[-1]
    data = dict(payload)
    data.update(
        {
            "id": note_id_from_path(filename),
            "name": filename,
            "filename": filename,
        }
    )
    data.setdefault("title", note_id_from_path(filename))
    return NoteMetadata.model_validate(data)


class SnapshotClient:
    """Reads the snapshot index and per-note payloads."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        self._base_url = (base_url or cfg.snapshot_url).rstrip("/") + "/"
        self._client = create_async_client(
            self._base_url,
            headers=_NO_CACHE_HEADERS,
            timeout=timeout or cfg.http_timeout,
            transport=transport,
        )
        self._last_index: Optional[SnapshotIndex] = None

    @property
    def last_index(self) -> Optional[SnapshotIndex]:
        """The most recent index that was read successfully."""
        return self._last_index

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch_json(self, path: str) -> Tuple[SnapshotState, Optional[Any]]:
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Snapshot read failed for {path}: {e}")
            return SnapshotState.UNAVAILABLE, None

        if response.status_code == 404:
            return SnapshotState.ABSENT, None
        try:
            if not response.is_success:
                raise SnapshotUnavailableError(
                    f"Snapshot endpoint returned {response.status_code}", url=path
                )
            content_type = response.headers.get("content-type", "")
            if "application/json" not in content_type:
                raise SnapshotUnavailableError(
                    f"Snapshot response is not JSON ({content_type or 'no content type'})",
                    url=path,
                )
            return SnapshotState.FOUND, response.json()
        except SnapshotUnavailableError as e:
            logger.warning(str(e))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Snapshot payload for {path} is not valid JSON: {e}")
        return SnapshotState.UNAVAILABLE, None

    @atraced("snapshot_get_index")
    async def get_index(self) -> Optional[SnapshotIndex]:
        """Fetch ``index.json``; ``None`` when the snapshot is not available."""
        state, payload = await self._fetch_json(INDEX_PATH)
        if state is not SnapshotState.FOUND or not isinstance(payload, dict):
            if state is SnapshotState.ABSENT:
                logger.info("Snapshot index not found; build may still be running")
            return None
        try:
            raw_notes = payload.get("notes") or {}
            index = SnapshotIndex.model_validate(
                {
                    **payload,
                    "notes": {
                        filename: _to_metadata(filename, entry)
                        for filename, entry in raw_notes.items()
                    },
                }
            )
        except (PydanticValidationError, AttributeError, TypeError) as e:
            logger.warning(f"Malformed snapshot index ignored: {e}")
            return None
        self._last_index = index
        return index

    async def probe_note(self, note_id: str) -> SnapshotProbe:
        """Point read distinguishing absence (404) from a failed read."""
        state, payload = await self._fetch_json(f"{note_id}{NOTE_SUFFIX}.json")
        if state is not SnapshotState.FOUND:
            return SnapshotProbe(state=state)
        if not isinstance(payload, dict):
            return SnapshotProbe(state=SnapshotState.UNAVAILABLE)
        try:
            note = _to_metadata(payload.get("filename") or f"{note_id}{NOTE_SUFFIX}", payload)
        except (PydanticValidationError, AttributeError, TypeError) as e:
            logger.warning(f"Malformed snapshot payload for {note_id}: {e}")
            return SnapshotProbe(state=SnapshotState.UNAVAILABLE)
        return SnapshotProbe(state=SnapshotState.FOUND, note=note)

    async def get_note(self, note_id: str) -> Optional[NoteMetadata]:
        """Fetch one note's compiled payload; ``None`` when not available."""
        probe = await self.probe_note(note_id)
        return probe.note

    async def has_compiled_since(self, note_id: str, instant: datetime.datetime) -> bool:
        """True when the snapshot holds ``note_id`` compiled strictly after ``instant``."""
        note = await self.get_note(note_id)
        return bool(note and note.compiled_at and note.compiled_at > instant)

    async def has_disappeared(self, note_id: str) -> bool:
        """True only when the snapshot positively reports the note as gone."""
        probe = await self.probe_note(note_id)
        return probe.state is SnapshotState.ABSENT

    async def list_notes(self, include_private: bool = False) -> Optional[List[Note]]:
        """Index entries as notes, newest first; ``None`` when unavailable."""
        index = await self.get_index()
        if index is None:
            return None
        notes = [
            meta
            for meta in index.notes.values()
            if include_private or not meta.is_private
        ]
        return sorted(notes, key=recency_key, reverse=True)

    def clear_cache(self) -> None:
        """Forget the memoised index."""
        self._last_index = None
