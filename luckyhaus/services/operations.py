from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from ..config import LotterySettings
from ..schemas import LedgerDocument, Round, Ticket, Winner
from ..types import (
    Found,
    LedgerCapacityError,
    LedgerConflictError,
    LedgerUnavailableError,
    Unavailable,
    WriteStatus,
)
from .ledger import ReplicatedLedger
from .rounds import as_decimal, fresh_round

Transform = Callable[[Optional[LedgerDocument]], LedgerDocument]


class LedgerOperations:
    """Domain mutations expressed as read -> transform -> write cycles.

    A cycle whose write is rejected because another writer got there first is
    replayed against the newer document, up to `write_attempts` times.
    """

    def __init__(
        self,
        ledger: ReplicatedLedger,
        settings: Optional[LotterySettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._ledger = ledger
        self._settings = settings or LotterySettings()
        self._logger = logger or logging.getLogger("luckyhaus.operations")

    @property
    def ledger(self) -> ReplicatedLedger:
        return self._ledger

    @property
    def settings(self) -> LotterySettings:
        return self._settings

    async def load(self) -> Optional[LedgerDocument]:
        result = await self._ledger.read()
        if isinstance(result, Unavailable):
            raise LedgerUnavailableError(result.cause)
        if isinstance(result, Found):
            return result.document
        return None

    async def apply(self, transform: Transform, label: str) -> bool:
        attempts = max(self._settings.write_attempts, 1)
        for attempt in range(1, attempts + 1):
            result = await self._ledger.read()
            if isinstance(result, Unavailable):
                self._logger.error("%s aborted: ledger unavailable (%s)", label, result.cause)
                return False

            current = result.document if isinstance(result, Found) else None
            updated = transform(current)
            outcome = await self._ledger.write(updated)

            if outcome.status is WriteStatus.CONFLICT:
                self._logger.info(
                    "%s lost a concurrent update (attempt %s/%s); retrying", label, attempt, attempts
                )
                continue
            if not outcome.ok:
                self._logger.error("%s could not be stored: %s", label, outcome.detail)
                return False
            return True

        raise LedgerConflictError(f"{label} conflicted with concurrent writers {attempts} times")

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def _new_document(self) -> LedgerDocument:
        round_ = fresh_round(self._settings.round_timezone, self._settings.round_hours)
        self._logger.info("No ledger document yet; starting round %s", round_.id)
        return LedgerDocument(current_round=round_)

    async def add_ticket(self, ticket: Ticket, amount: Optional[Any] = None) -> bool:
        contribution = as_decimal(amount) if amount is not None else self._settings.default_ticket_amount
        max_tickets = self._settings.max_tickets

        def transform(document: Optional[LedgerDocument]) -> LedgerDocument:
            if document is None:
                document = self._new_document()
            if max_tickets and len(document.tickets) >= max_tickets:
                raise LedgerCapacityError(f"ledger already holds {len(document.tickets)} tickets")
            document.tickets.append(ticket.model_copy())
            document.current_round.total_tickets += 1
            document.current_round.pot_size += contribution
            return document

        stored = await self.apply(transform, f"add ticket {ticket.id}")
        if stored:
            self._logger.info(
                "Ticket %s for %s stored (round %s, +%s to pot)",
                ticket.id,
                ticket.wallet_address,
                ticket.round_id,
                contribution,
            )
        return stored

    async def set_round(self, round_: Round) -> bool:
        def transform(document: Optional[LedgerDocument]) -> LedgerDocument:
            if document is None:
                return LedgerDocument(current_round=round_.model_copy())
            document.current_round = round_.model_copy()
            return document

        return await self.apply(transform, f"set round {round_.id}")

    async def append_winner(self, winner: Winner) -> bool:
        def transform(document: Optional[LedgerDocument]) -> LedgerDocument:
            if document is None:
                document = self._new_document()
            document.winners.append(winner.model_copy())
            return document

        return await self.apply(transform, f"record winner {winner.wallet_address} for {winner.round_id}")

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    async def current_round(self) -> Optional[Round]:
        document = await self.load()
        return document.current_round if document else None

    async def user_tickets(self, wallet_address: str, round_id: str) -> List[Ticket]:
        document = await self.load()
        if document is None:
            return []
        return document.tickets_for(round_id, wallet_address)

    async def recent_winners(self, limit: int = 10) -> List[Winner]:
        document = await self.load()
        if document is None or limit <= 0:
            return []
        return list(reversed(document.winners[-limit:]))
