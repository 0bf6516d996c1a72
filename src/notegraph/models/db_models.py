"""SQLAlchemy database models for the notegraph engine."""
import datetime

from sqlalchemy import (Column, DateTime, ForeignKey, Index, String, Text,
                        UniqueConstraint, create_engine, event)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from notegraph.config import config


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# Unicode-aware case folding, registered on every connection
CASEFOLD_FUNCTION = "ng_casefold"


def _casefold(value):
    return value.casefold() if value else value


# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note (owned by the note store)."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False, index=True)
    slug = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    outgoing_links = relationship(
        "DBLinkEdge",
        foreign_keys="DBLinkEdge.source_note_id",
        back_populates="source",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "slug", name="uq_notes_owner_slug"),
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBLinkEdge(Base):
    """Database model for a directed link between two notes.

    No uniqueness on (source, target): each anchor occurrence is its own edge.
    The target column is deliberately not a foreign key so that edges to a
    deleted note survive as dangling links with their canonical snapshot.
    """
    __tablename__ = "note_links"
    id = Column(String(64), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    source_note_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_note_id = Column(String(64), nullable=False, index=True)
    anchor_text = Column(Text, nullable=True)
    canonical_title = Column(String(500), nullable=False)
    canonical_slug = Column(String(500), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    source = relationship(
        "DBNote", foreign_keys=[source_note_id], back_populates="outgoing_links"
    )

    __table_args__ = (
        Index("idx_note_links_owner_slug", "owner_id", "canonical_slug"),
    )

    def __repr__(self) -> str:
        """Return string representation of link."""
        return (
            f"<LinkEdge(id='{self.id}', source='{self.source_note_id}', "
            f"target='{self.target_note_id}')>"
        )


def init_db(db_url=None):
    """Create the engine and schema.

    File databases get WAL journaling and foreign-key enforcement; the
    in-memory database is pinned to one shared connection so that worker
    threads see the same data.
    """
    url = db_url or config.get_db_url()
    if url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        # SQLite lower() only folds ASCII
        dbapi_connection.create_function(CASEFOLD_FUNCTION, 1, _casefold)
        if url not in ("sqlite://", "sqlite:///:memory:"):
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
