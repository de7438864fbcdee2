from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .types import RoundStatus


def _to_decimal(value: Any) -> Any:
    # floats go through str() so 0.51 stays 0.51
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Round(CamelModel):
    id: str
    round_number: int = Field(..., ge=1)
    pot_size: Decimal = Decimal("0")
    total_tickets: int = Field(0, ge=0)
    end_time: int
    status: RoundStatus = RoundStatus.ACTIVE

    @field_validator("pot_size", mode="before")
    @classmethod
    def coerce_pot_size(cls, value: Any) -> Any:
        return _to_decimal(value)

    @field_serializer("pot_size", when_used="json")
    def serialize_pot_size(self, value: Decimal) -> float:
        return float(value)


class Ticket(CamelModel):
    id: str
    wallet_address: str
    round_id: str
    timestamp: int
    transaction_signature: Optional[str] = None


class Winner(CamelModel):
    round_id: str
    wallet_address: str
    prize_amount: Decimal
    timestamp: int
    payout_signature: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("payoutSignature", "payoutTransactionSignature", "payout_signature"),
        serialization_alias="payoutSignature",
    )
    payout_error: Optional[str] = None

    @field_validator("prize_amount", mode="before")
    @classmethod
    def coerce_prize_amount(cls, value: Any) -> Any:
        return _to_decimal(value)

    @field_serializer("prize_amount", when_used="json")
    def serialize_prize_amount(self, value: Decimal) -> float:
        return float(value)

    @property
    def settled(self) -> bool:
        return bool(self.payout_signature) and not self.payout_error


class LedgerDocument(CamelModel):
    """The whole ledger aggregate: one round, every ticket and every winner."""

    current_round: Round
    tickets: List[Ticket] = Field(default_factory=list)
    winners: List[Winner] = Field(default_factory=list)
    version: int = Field(0, ge=0)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LedgerDocument":
        return cls.model_validate(payload)

    @classmethod
    def from_json(cls, text: str) -> "LedgerDocument":
        return cls.from_payload(json.loads(text))

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), indent=2)

    def clone(self, **updates: Any) -> "LedgerDocument":
        return self.model_copy(update=updates, deep=True)

    def pending_winners(
        self, round_id: Optional[str] = None, wallet_address: Optional[str] = None
    ) -> List[Winner]:
        pending = []
        for winner in self.winners:
            if winner.settled:
                continue
            if round_id is not None and winner.round_id != round_id:
                continue
            if wallet_address is not None and winner.wallet_address != wallet_address:
                continue
            pending.append(winner)
        return pending

    def tickets_for(self, round_id: str, wallet_address: Optional[str] = None) -> List[Ticket]:
        return [
            ticket
            for ticket in self.tickets
            if ticket.round_id == round_id
            and (wallet_address is None or ticket.wallet_address == wallet_address)
        ]

    def winner_for_round(self, round_id: str) -> Optional[Winner]:
        for winner in self.winners:
            if winner.round_id == round_id:
                return winner
        return None


class TicketPurchaseRequest(CamelModel):
    round_id: str = Field(..., min_length=1)
    wallet_address: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Total paid for all tickets in this purchase.")
    quantity: int = Field(1, ge=1, le=100)
    transaction_signature: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> Any:
        return _to_decimal(value)


class RetryPayoutRequest(CamelModel):
    round_id: str = Field(..., min_length=1)
    winner_address: str = Field(..., min_length=1)


class PendingPayoutResponse(CamelModel):
    round_id: str
    wallet_address: str
    prize_amount: Decimal
    timestamp: int
    payout_error: Optional[str] = None

    @field_serializer("prize_amount", when_used="json")
    def serialize_prize_amount(self, value: Decimal) -> float:
        return float(value)

    @classmethod
    def from_winner(cls, winner: Winner) -> "PendingPayoutResponse":
        return cls(
            round_id=winner.round_id,
            wallet_address=winner.wallet_address,
            prize_amount=winner.prize_amount,
            timestamp=winner.timestamp,
            payout_error=winner.payout_error,
        )

    def to_payload(self) -> Dict[str, Any]:
        # payoutError is reported as null rather than omitted
        return self.model_dump(mode="json", by_alias=True)
