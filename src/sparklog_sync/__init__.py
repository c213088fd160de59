"""
Sparklog Sync - reconciliation engine for a three-tier note client.

This package keeps a note list consistent across an authoritative remote
store, a periodically rebuilt read snapshot, and local edits that have not
yet reached either of them.

All network I/O is asynchronous (asyncio + httpx).
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sparklog-sync")
except PackageNotFoundError:
    __version__ = "0.3.0"
