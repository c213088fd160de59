"""Capability interfaces consumed by the reconciliation engine.

The engine depends on these protocols rather than on the concrete HTTP
clients, so tests and alternative hosts can supply their own.
"""
import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Union

from sparklog_sync.models.schema import (
    BuildStatus,
    FileMeta,
    NoteMetadata,
    SnapshotIndex,
    SnapshotProbe,
)

Clock = Callable[[], datetime.datetime]


class SnapshotSource(Protocol):
    """Read-only access to the compiled snapshot."""

    async def get_index(self) -> Optional[SnapshotIndex]: ...

    async def get_note(self, note_id: str) -> Optional[NoteMetadata]: ...

    async def probe_note(self, note_id: str) -> SnapshotProbe: ...


class RemoteStore(Protocol):
    """The authoritative version-controlled store."""

    async def list_files(self, directory: Optional[str] = None) -> List[FileMeta]: ...

    async def get_content(self, file: Union[FileMeta, str]) -> bytes: ...

    async def batch_get_content(
        self,
        files: Sequence[FileMeta],
        concurrency: Optional[int] = None,
        inter_batch_delay_ms: Optional[int] = None,
    ) -> Dict[str, bytes]: ...

    async def create(self, path: str, content: Union[str, bytes]) -> str: ...

    async def update(
        self, path: str, content: Union[str, bytes], version_token: str
    ) -> str: ...

    async def delete(self, path: str, version_token: str) -> None: ...


class BuildPipeline(Protocol):
    """Trigger and observe the snapshot build."""

    async def trigger_build(self) -> bool: ...

    async def status(self) -> BuildStatus: ...
