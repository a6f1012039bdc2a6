"""Persistence collaborator for duplicate records and ingestion history.

The core treats the store as an opaque key-value document store:
- get(list_key) -> ordered records
- put(list_key, records) -> overwrite

Two implementations:
- InMemoryDocumentStore: per-process, used by tests and one-shot jobs.
- SqlDocumentStore: one JSON document per list key (SQLAlchemy 2.0).
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Optional, Protocol

from sqlalchemy import JSON, DateTime, String, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

UPLOADED_AUDIO_KEY = "uploaded_audio"
UPLOADED_DECAL_KEY = "uploaded_decal"
INGESTION_HISTORY_KEY = "ingestion_history"


class DocumentStore(Protocol):
    def get(self, list_key: str) -> list[dict[str, Any]]:
        ...

    def put(self, list_key: str, records: list[dict[str, Any]]) -> None:
        ...


class InMemoryDocumentStore:
    """Simple per-process store. Returns copies so callers can't mutate state in place."""

    def __init__(self, initial: Optional[dict[str, list[dict[str, Any]]]] = None) -> None:
        self._docs: dict[str, list[dict[str, Any]]] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, list_key: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._docs.get(list_key, []))

    def put(self, list_key: str, records: list[dict[str, Any]]) -> None:
        with self._lock:
            self._docs[list_key] = copy.deepcopy(list(records))


class Base(DeclarativeBase):
    """Declarative base for the ingestion store tables."""


class IngestDocument(Base):
    """One ordered list of records, stored as a JSON document."""

    __tablename__ = "ingest_documents"

    list_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    records: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        server_default=func.now(),
        onupdate=func.now(),
    )


def create_store_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True, future=True)


class SqlDocumentStore:
    """Persists document lists through SQLAlchemy. Works on PostgreSQL and SQLite."""

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine, class_=Session, autoflush=False, autocommit=False
        )
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str) -> "SqlDocumentStore":
        return cls(create_store_engine(url))

    def get(self, list_key: str) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            row = session.execute(
                select(IngestDocument).where(IngestDocument.list_key == list_key)
            ).scalar_one_or_none()
            if row is None:
                return []
            return list(row.records or [])

    def put(self, list_key: str, records: list[dict[str, Any]]) -> None:
        with self._session_factory() as session:
            row = session.get(IngestDocument, list_key)
            if row is None:
                row = IngestDocument(list_key=list_key, records=list(records))
                session.add(row)
            else:
                # Reassign so the JSON column is flagged dirty.
                row.records = list(records)
            session.commit()
