"""Service layer for the Sparklog sync engine."""

from sparklog_sync.services.build_pipeline import BuildPipelineClient
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.edit_cache import EditCache
from sparklog_sync.services.note_service import NoteService
from sparklog_sync.services.reconciler import BuildMonitor, Reconciler
from sparklog_sync.services.remote_store import RemoteStoreClient
from sparklog_sync.services.snapshot_client import SnapshotClient

__all__ = [
    "BuildMonitor",
    "BuildPipelineClient",
    "DraftLog",
    "EditCache",
    "NoteService",
    "Reconciler",
    "RemoteStoreClient",
    "SnapshotClient",
]
