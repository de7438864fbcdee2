from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..config import LotterySettings
from ..schemas import LedgerDocument, Round, Winner
from ..types import RoundStatus
from .operations import LedgerOperations
from .payouts import PayoutService, request_payout
from .rounds import daily_round, now_ms


class _RoundTaken(Exception):
    def __init__(self, winner: Optional[Winner]) -> None:
        super().__init__("round already ended or being drawn")
        self.winner = winner


@dataclass
class RoundOutcome:
    round_id: str
    winner: Optional[Winner] = None
    ticket_id: Optional[str] = None
    new_round: Optional[Round] = None
    already_ended: bool = False
    persisted: bool = True

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.persisted,
            "roundId": self.round_id,
            "winner": None,
        }
        if self.winner is not None:
            winner = self.winner.to_payload()
            if self.ticket_id:
                winner["ticketId"] = self.ticket_id
            payload["winner"] = winner
        if self.new_round is not None:
            payload["newRound"] = self.new_round.to_payload()
        if self.already_ended:
            payload["alreadyEnded"] = True
            payload["message"] = "Round already ended"
        if not self.persisted:
            payload["error"] = "Round result could not be stored"
        return payload


class DrawService:
    """Closes a round: draws a ticket, pays the pot and opens the next day's round."""

    def __init__(
        self,
        operations: LedgerOperations,
        payout_service: PayoutService,
        settings: Optional[LotterySettings] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._operations = operations
        self._payout_service = payout_service
        self._settings = settings or operations.settings
        self._rng = rng or random.SystemRandom()
        self._logger = logger or logging.getLogger("luckyhaus.draws")

    async def end_round(self, round_id: str) -> RoundOutcome:
        """Draw and pay a winner for `round_id`, then open the next round.

        The current round is first marked as drawing in its own versioned
        write. Only the caller whose mark is stored goes on to pay; anyone
        else sees the mark or the recorded winner and gets `already_ended`.
        A round left in the drawing state by a failed final write stays
        closed until an administrator replaces the round.
        """
        document = await self._operations.load()
        if document is None:
            raise LookupError("No lottery data found")

        existing = document.winner_for_round(round_id)
        if existing is not None or document.current_round.status is RoundStatus.DRAWING:
            return self._already_ended(round_id, existing)

        claimed: Optional[LedgerDocument] = None

        def claim(current: Optional[LedgerDocument]) -> LedgerDocument:
            nonlocal claimed
            if current is None:
                raise LookupError("No lottery data found")
            if current.winner_for_round(round_id) is not None:
                raise _RoundTaken(current.winner_for_round(round_id))
            if current.current_round.status is RoundStatus.DRAWING:
                raise _RoundTaken(None)
            current.current_round.status = RoundStatus.DRAWING
            claimed = current
            return current

        try:
            if not await self._operations.apply(claim, f"claim round {round_id}"):
                self._logger.error("Round %s could not be claimed for drawing; nothing paid", round_id)
                return RoundOutcome(round_id=round_id, persisted=False)
        except _RoundTaken as taken:
            return self._already_ended(round_id, taken.winner)

        winner, ticket_id = await self._draw(claimed, round_id)

        new_round = daily_round(self._settings.round_timezone)
        if new_round.id == round_id:
            new_round = daily_round(self._settings.round_timezone, day_offset=1)

        def transform(current: Optional[LedgerDocument]) -> LedgerDocument:
            if current is None:
                current = LedgerDocument(current_round=new_round.model_copy())
            if winner is not None and current.winner_for_round(round_id) is None:
                current.winners.append(winner.model_copy())
            current.current_round = new_round.model_copy()
            return current

        persisted = await self._operations.apply(transform, f"end round {round_id}")
        if not persisted:
            self._logger.error(
                "Round %s result not stored (winner=%s signature=%s)",
                round_id,
                winner.wallet_address if winner else None,
                winner.payout_signature if winner else None,
            )
        elif winner is not None and winner.payout_error:
            self._logger.warning(
                "Winner for round %s saved but payout failed; retry it from the admin API", round_id
            )

        return RoundOutcome(
            round_id=round_id,
            winner=winner,
            ticket_id=ticket_id,
            new_round=new_round,
            persisted=persisted,
        )

    def _already_ended(self, round_id: str, winner: Optional[Winner]) -> RoundOutcome:
        if winner is not None:
            self._logger.info("Round %s already ended; winner %s", round_id, winner.wallet_address)
        else:
            self._logger.info("Round %s is already being drawn", round_id)
        return RoundOutcome(round_id=round_id, winner=winner, already_ended=True)

    async def _draw(
        self, document: LedgerDocument, round_id: str
    ) -> Tuple[Optional[Winner], Optional[str]]:
        tickets = document.tickets_for(round_id)
        if not tickets:
            self._logger.info("No tickets found for round %s", round_id)
            return None, None

        ticket = self._rng.choice(tickets)
        prize = document.current_round.pot_size
        self._logger.info(
            "Round %s winner drawn: %s (ticket %s of %s)",
            round_id,
            ticket.wallet_address,
            ticket.id,
            len(tickets),
        )
        if prize <= 0:
            self._logger.info("No prize to award for round %s; skipping winner record", round_id)
            return None, ticket.id

        payout = await request_payout(self._payout_service, ticket.wallet_address, prize, self._logger)
        if payout.success:
            self._logger.info("Payout for round %s sent: %s", round_id, payout.signature)
        else:
            self._logger.error("Payout for round %s failed: %s", round_id, payout.error)

        winner = Winner(
            round_id=round_id,
            wallet_address=ticket.wallet_address,
            prize_amount=prize,
            timestamp=now_ms(),
            payout_signature=payout.signature if payout.success else None,
            payout_error=None if payout.success else (payout.error or "Payout failed"),
        )
        return winner, ticket.id
