from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..db import build_engine, build_session_factory, session_scope
from ..models import Base, LedgerRecord
from ..schemas import LedgerDocument
from ..types import Found, NotFound, ReadResult, Unavailable, WriteResult
from .base import StorageBackend

logger = logging.getLogger("luckyhaus.storage.primary")


class SqlLedgerStore(StorageBackend):
    """Primary store: one row per ledger id in a relational database."""

    name = "primary"

    def __init__(self, engine: Engine, ledger_id: str) -> None:
        self._engine = engine
        self._sessions = build_session_factory(engine)
        self._ledger_id = ledger_id
        self._schema_ready = False

    @classmethod
    def from_url(cls, database_url: str, ledger_id: str) -> "SqlLedgerStore":
        return cls(build_engine(database_url), ledger_id)

    @property
    def engine(self) -> Engine:
        return self._engine

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            Base.metadata.create_all(self._engine)
            self._schema_ready = True

    async def get(self) -> ReadResult:
        try:
            return await asyncio.to_thread(self._get_sync)
        except SQLAlchemyError as exc:
            logger.warning("Primary store read failed: %s", exc)
            return Unavailable(f"database error: {exc}")
        except ValueError as exc:
            logger.error("Primary store holds an unreadable ledger document: %s", exc)
            return Unavailable(f"corrupt document: {exc}")

    async def put(self, document: LedgerDocument, expected_version: Optional[int] = None) -> WriteResult:
        try:
            return await asyncio.to_thread(self._put_sync, document, expected_version)
        except SQLAlchemyError as exc:
            logger.warning("Primary store write failed: %s", exc)
            return WriteResult.failure(f"database error: {exc}")

    def _get_sync(self) -> ReadResult:
        self._ensure_schema()
        with session_scope(self._sessions) as session:
            record = session.get(LedgerRecord, self._ledger_id)
            if record is None:
                return NotFound()
            document = LedgerDocument.from_json(record.payload)
            # the column is authoritative for the concurrency token
            document.version = record.version
            return Found(document)

    def _put_sync(self, document: LedgerDocument, expected_version: Optional[int]) -> WriteResult:
        self._ensure_schema()
        payload = document.to_json()
        try:
            with session_scope(self._sessions) as session:
                stmt = update(LedgerRecord).where(LedgerRecord.ledger_id == self._ledger_id)
                if expected_version is not None:
                    stmt = stmt.where(LedgerRecord.version == expected_version)
                result = session.execute(
                    stmt.values(
                        version=document.version,
                        payload=payload,
                        updated_at=dt.datetime.now(dt.timezone.utc),
                    )
                )
                if result.rowcount == 1:
                    return WriteResult.success()
                if expected_version not in (None, 0):
                    return WriteResult.conflict(
                        f"ledger {self._ledger_id} is no longer at version {expected_version}"
                    )
                session.add(
                    LedgerRecord(ledger_id=self._ledger_id, version=document.version, payload=payload)
                )
                session.flush()
        except IntegrityError:
            if expected_version is None:
                # another writer created the row first; overwrite it
                return self._put_sync(document, expected_version)
            return WriteResult.conflict(f"ledger {self._ledger_id} was created concurrently")
        return WriteResult.success()
