from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from ..schemas import LedgerDocument
from ..types import Found, NotFound, ReadResult, WriteResult
from .base import StorageBackend

logger = logging.getLogger("luckyhaus.storage.memory")


class MemoryLedgerStore(StorageBackend):
    """Process-local store. Nothing survives a restart."""

    name = "memory"

    def __init__(self, ledger_id: str, documents: Optional[Dict[str, LedgerDocument]] = None) -> None:
        self._ledger_id = ledger_id
        self._documents: Dict[str, LedgerDocument] = documents if documents is not None else {}
        self._lock = threading.Lock()

    async def get(self) -> ReadResult:
        with self._lock:
            document = self._documents.get(self._ledger_id)
            if document is None:
                return NotFound()
            return Found(document.clone())

    async def put(self, document: LedgerDocument, expected_version: Optional[int] = None) -> WriteResult:
        with self._lock:
            if expected_version is not None:
                current = self._documents.get(self._ledger_id)
                stored_version = current.version if current is not None else 0
                if stored_version != expected_version:
                    return WriteResult.conflict(
                        f"stored version {stored_version} != expected {expected_version}"
                    )
            self._documents[self._ledger_id] = document.clone()

        round_ = document.current_round
        logger.debug(
            "Updated in-memory ledger %s: round=%s pot=%s tickets=%s winners=%s",
            self._ledger_id,
            round_.id,
            round_.pot_size,
            len(document.tickets),
            len(document.winners),
        )
        return WriteResult.success()
