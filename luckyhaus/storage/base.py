from __future__ import annotations

import abc
from typing import Optional

from ..schemas import LedgerDocument
from ..types import ReadResult, Unavailable, WriteResult


class StorageBackend(abc.ABC):
    """Whole-document storage for a single ledger id.

    Implementations never raise from `get` or `put`: connectivity, auth and
    decoding problems are reported as `Unavailable` / failed `WriteResult`
    values so the replication layer can decide what to do with them.
    """

    name: str = "backend"

    @abc.abstractmethod
    async def get(self) -> ReadResult:
        """Return `Found(doc)`, `NotFound()` or `Unavailable(cause)`."""

    @abc.abstractmethod
    async def put(self, document: LedgerDocument, expected_version: Optional[int] = None) -> WriteResult:
        """Store `document` as the full ledger.

        `expected_version=None` overwrites unconditionally. An integer makes the
        write conditional on the stored version, a missing document counting as
        version 0. Backends that cannot compare versions may ignore it.
        """

    async def ping(self) -> bool:
        result = await self.get()
        return not isinstance(result, Unavailable)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
