from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.fieldops.models import DocumentKind


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlitePersistence:
    """
    Uses SQLAlchemy and supports both SQLite and PostgreSQL URLs.

    ``document_numbers`` is the storage-side uniqueness guarantee for minted
    quote, work order and invoice numbers.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.document_numbers = Table(
            "document_numbers",
            self.metadata,
            Column("seq", Integer, primary_key=True, autoincrement=True),
            Column("kind", String(30), nullable=False),
            Column("number", String(40), nullable=False),
            Column("document_id", String(120), nullable=False),
            Column("created_at_utc", DateTime, nullable=False),
            UniqueConstraint("kind", "number", name="uq_document_numbers_kind_number"),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict) -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = datetime.now(timezone.utc)
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(self.state_snapshots.c.id == "default")
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == "default")
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id="default",
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == "default"
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def reserve_document_number(
        self, *, kind: DocumentKind, number: str, document_id: str
    ) -> bool:
        """Claim ``number`` for ``kind``. Returns False when it is already taken."""
        with self._lock:
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        self.document_numbers.insert().values(
                            kind=kind.value,
                            number=number,
                            document_id=document_id,
                            created_at_utc=datetime.now(timezone.utc),
                        )
                    )
            except IntegrityError:
                return False
            return True

    def list_recent_document_numbers(self, kind: DocumentKind, limit: int = 10) -> list[str]:
        safe_limit = max(1, min(limit, 500))
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(self.document_numbers.c.number)
                    .where(self.document_numbers.c.kind == kind.value)
                    .order_by(self.document_numbers.c.seq.desc())
                    .limit(safe_limit)
                ).all()
        return [row.number for row in rows]
