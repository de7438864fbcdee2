from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import AppSettings
from ..schemas import LedgerDocument
from ..storage import GistLedgerStore, MemoryLedgerStore, SqlLedgerStore, StorageBackend
from ..types import Found, NotFound, ReadResult, Unavailable, WriteResult, WriteStatus


class ReplicatedLedger:
    """Presents a primary and a backup store as one available ledger.

    Reads go to the primary first and fall back to the backup; a document that
    only the backup holds is copied back into an empty primary. Writes go to
    the primary first, then to the backup unless the primary reported a
    version conflict, and succeed when either store accepts them. This is
    best-effort replication, not a transaction: the stores can diverge while
    one of them is down, and the primary wins once it is back.

    Every write carries the version that was read. The primary refuses a write
    whose version has moved on, which turns lost updates from concurrent
    read-modify-write cycles into a `conflict` result the caller can retry.
    """

    def __init__(
        self,
        primary: Optional[StorageBackend],
        backup: Optional[StorageBackend] = None,
        fallback: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if primary is None and backup is None:
            raise ValueError("ReplicatedLedger needs at least one backend")
        self._primary = primary
        self._backup = backup
        self._fallback = fallback
        self._logger = logger or logging.getLogger("luckyhaus.ledger")

    @classmethod
    def in_memory(cls, ledger_id: str) -> "ReplicatedLedger":
        return cls(MemoryLedgerStore(ledger_id), fallback=True)

    @property
    def backends(self) -> List[StorageBackend]:
        return [backend for backend in (self._primary, self._backup) if backend is not None]

    @property
    def uses_fallback(self) -> bool:
        return self._fallback

    def describe(self) -> Dict[str, object]:
        return {
            "primary": self._primary.name if self._primary else None,
            "backup": self._backup.name if self._backup else None,
            "in_memory_fallback": self._fallback,
        }

    async def read(self) -> ReadResult:
        primary_result: Optional[ReadResult] = None
        if self._primary is not None:
            primary_result = await self._primary.get()
            if isinstance(primary_result, Found):
                self._logger.debug("Ledger read from %s", self._primary.name)
                return primary_result
            if isinstance(primary_result, Unavailable):
                self._logger.warning(
                    "Primary ledger store unavailable (%s); trying backup", primary_result.cause
                )

        if self._backup is None:
            return primary_result if primary_result is not None else NotFound()

        backup_result = await self._backup.get()
        if isinstance(backup_result, Found):
            self._logger.info("Ledger read from %s", self._backup.name)
            if isinstance(primary_result, NotFound):
                await self._repair(backup_result.document)
            return backup_result

        if isinstance(backup_result, Unavailable):
            self._logger.warning("Backup ledger store unavailable (%s)", backup_result.cause)
        if primary_result is None:
            return backup_result
        if isinstance(primary_result, Unavailable):
            return primary_result
        return NotFound()

    async def write(self, document: LedgerDocument) -> WriteResult:
        """Store `document` on every backend; succeed if any accepted it.

        On success `document.version` is advanced to the stored version.
        """
        expected_version = document.version
        stored = document.clone(version=expected_version + 1)

        outcomes = []
        if self._primary is not None:
            result = await self._put(self._primary, stored, expected_version)
            if result.status is WriteStatus.CONFLICT:
                # the backup must not keep a document the primary refused
                self._logger.info(
                    "Ledger write at version %s rejected by %s: %s",
                    expected_version,
                    self._primary.name,
                    result.detail,
                )
                return result
            outcomes.append((self._primary, result))
        if self._backup is not None:
            outcomes.append((self._backup, await self._put(self._backup, stored, None)))

        accepted = [backend.name for backend, result in outcomes if result.ok]
        rejected = [f"{backend.name}: {result.detail}" for backend, result in outcomes if not result.ok]

        if not accepted:
            self._logger.error("Ledger write failed on every backend (%s)", "; ".join(rejected))
            return WriteResult.failure("; ".join(rejected))

        if rejected:
            self._logger.warning(
                "Ledger write accepted by %s but failed on %s",
                ", ".join(accepted),
                "; ".join(rejected),
            )
        else:
            self._logger.debug("Ledger version %s written to %s", stored.version, ", ".join(accepted))
        document.version = stored.version
        return WriteResult.success()

    async def _put(
        self, backend: StorageBackend, document: LedgerDocument, expected_version: Optional[int]
    ) -> WriteResult:
        try:
            return await backend.put(document, expected_version=expected_version)
        except Exception as exc:  # backends report failures as values; this guards a faulty one
            self._logger.exception("Unexpected error writing to %s: %s", backend.name, exc)
            return WriteResult.failure(str(exc))

    async def _repair(self, document: LedgerDocument) -> None:
        if self._primary is None:
            return
        result = await self._put(self._primary, document, 0)
        if result.ok:
            self._logger.info(
                "Copied ledger version %s from %s back to %s",
                document.version,
                self._backup.name if self._backup else "backup",
                self._primary.name,
            )
        else:
            self._logger.warning("Failed to repair %s from backup: %s", self._primary.name, result.detail)


async def build_ledger(settings: AppSettings, logger: Optional[logging.Logger] = None) -> ReplicatedLedger:
    """Wire the configured stores, falling back to memory when none answers."""
    logger = logger or logging.getLogger("luckyhaus.ledger")
    ledger_id = settings.lottery.ledger_id

    primary: Optional[StorageBackend] = None
    if settings.primary.configured:
        try:
            primary = SqlLedgerStore.from_url(settings.primary.database_url, ledger_id)
        except (SQLAlchemyError, ImportError) as exc:
            logger.error("Cannot configure primary ledger store: %s", exc)

    backup: Optional[StorageBackend] = None
    if settings.backup.configured:
        backup = GistLedgerStore(settings.backup)

    reachable = [backend for backend in (primary, backup) if backend is not None and await backend.ping()]
    if not reachable:
        logger.warning(
            "No durable ledger store reachable; using in-memory storage for ledger %s "
            "(data will not survive a restart)",
            ledger_id,
        )
        return ReplicatedLedger.in_memory(ledger_id)

    logger.info(
        "Ledger %s using primary=%s backup=%s (reachable: %s)",
        ledger_id,
        primary.name if primary else None,
        backup.name if backup else None,
        ", ".join(backend.name for backend in reachable),
    )
    return ReplicatedLedger(primary, backup, logger=logger)
