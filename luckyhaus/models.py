from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class LedgerRecord(Base):
    """One serialized ledger document per ledger id."""

    __tablename__ = "ledger_documents"

    ledger_id = Column(String(64), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
