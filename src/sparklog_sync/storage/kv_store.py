"""Key-value persistence for engine state.

The draft log only needs get/set/remove/enumerate over string keys and
JSON string values. ``InMemoryStore`` backs tests and ephemeral sessions;
``SqliteStore`` is the durable implementation.
"""
import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sparklog_sync.exceptions import ErrorCode, StorageError
from sparklog_sync.models.db_models import Base, DBStateEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Capability required from the persistence substrate."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class InMemoryStore:
    """Dict-backed store.

    ``quota_bytes`` emulates a bounded substrate: a write that would push the
    total size of keys and values past the quota raises ``StorageError``
    with ``STORAGE_QUOTA_EXCEEDED`` and leaves the store untouched.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._data: Dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        total = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
        return total + len(key) + len(value)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota_bytes is not None and self._size_with(key, value) > self._quota_bytes:
            raise StorageError(
                "Storage quota exceeded",
                operation="set",
                key=key,
                code=ErrorCode.STORAGE_QUOTA_EXCEEDED,
            )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)


class SqliteStore:
    """Durable store on a single SQLite table via SQLAlchemy."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        Base.metadata.create_all(engine)
        self._session_factory = sessionmaker(bind=engine)

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                entry = session.get(DBStateEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read state entry: {e}",
                operation="get",
                key=key,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            )

    def set(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    entry = session.get(DBStateEntry, key)
                    if entry is None:
                        session.add(DBStateEntry(key=key, value=value))
                    else:
                        entry.value = value
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to write state entry: {e}",
                operation="set",
                key=key,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )

    def remove(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    entry = session.get(DBStateEntry, key)
                    if entry is not None:
                        session.delete(entry)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to delete state entry: {e}",
                operation="remove",
                key=key,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            )

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as session:
                return list(session.scalars(select(DBStateEntry.key)))
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to enumerate state entries: {e}",
                operation="keys",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            )
