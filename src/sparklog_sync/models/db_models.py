"""SQLAlchemy database models for the local state store."""
from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from sparklog_sync.config import config
from sparklog_sync.models.schema import utc_now

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBStateEntry(Base):
    """One key-value pair of persisted engine state (drafts, draft index)."""
    __tablename__ = "state_entries"
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        """Return string representation of the entry."""
        return f"<StateEntry(key='{self.key}', bytes={len(self.value or '')})>"


def init_db(db_url: str = None) -> Engine:
    """Create the engine and make sure the schema exists.

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured state database.
    """
    engine = create_engine(db_url or config.get_state_db_url())
    Base.metadata.create_all(engine)
    return engine
