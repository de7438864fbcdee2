from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol

import requests

from ..config import PayoutSettings
from ..schemas import LedgerDocument, Winner
from ..types import Found, LedgerUnavailableError, Unavailable, WriteStatus
from .ledger import ReplicatedLedger


@dataclass(frozen=True)
class PayoutResult:
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None


class PayoutService(Protocol):
    async def pay(self, wallet_address: str, amount: Decimal) -> PayoutResult:
        ...


class HttpPayoutService:
    """Client for the payout endpoint that builds and signs the transfer."""

    def __init__(self, settings: PayoutSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    async def pay(self, wallet_address: str, amount: Decimal) -> PayoutResult:
        if not self._settings.url:
            return PayoutResult(False, error="payout service not configured; set PAYOUT_SERVICE_URL")
        try:
            return await asyncio.to_thread(self._pay_sync, wallet_address, amount)
        except requests.RequestException as exc:
            return PayoutResult(False, error=f"payout request failed: {exc}")

    def _pay_sync(self, wallet_address: str, amount: Decimal) -> PayoutResult:
        headers = {"Content-Type": "application/json"}
        if self._settings.api_token:
            headers["x-api-token"] = self._settings.api_token

        resp = self._session.post(
            self._settings.url,
            json={"winnerAddress": wallet_address, "amount": float(amount)},
            headers=headers,
            timeout=self._settings.timeout_seconds,
        )
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, Mapping):
            data = {}

        if not resp.ok or not data.get("success"):
            error = data.get("error") or f"HTTP {resp.status_code}: {resp.reason}"
            return PayoutResult(False, error=str(error))
        if not data.get("signature"):
            return PayoutResult(False, error="payout service reported success without a signature")
        return PayoutResult(True, signature=str(data["signature"]))


class RetryStatus(str, Enum):
    SETTLED = "settled"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    UNRECORDED = "unrecorded"
    UNAVAILABLE = "unavailable"


@dataclass
class RetryResult:
    status: RetryStatus
    round_id: str
    wallet_address: str
    amount: Optional[Decimal] = None
    signature: Optional[str] = None
    updated_winners: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is RetryStatus.SETTLED

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "roundId": self.round_id,
            "winnerAddress": self.wallet_address,
        }
        if self.amount is not None:
            payload["amount"] = float(self.amount)
        if self.signature:
            payload["signature"] = self.signature
        if self.success:
            payload["updatedWinners"] = self.updated_winners
        if self.error:
            payload["error"] = self.error
        return payload


async def request_payout(
    service: PayoutService, wallet_address: str, amount: Decimal, logger: logging.Logger
) -> PayoutResult:
    """Call the payout service, folding raised errors into a failed result.

    A success without a signature cannot be recorded as settled, so it is
    reported as a failure.
    """
    try:
        result = await service.pay(wallet_address, amount)
    except Exception as exc:
        logger.exception("Payout of %s to %s raised: %s", amount, wallet_address, exc)
        return PayoutResult(False, error=str(exc) or type(exc).__name__)
    if result.success and not result.signature:
        logger.error("Payout of %s to %s reported success without a signature", amount, wallet_address)
        return PayoutResult(False, error="payout service reported success without a signature")
    return result


class PayoutReconciler:
    """Finds winners without a confirmed payout and pays them.

    A winner only counts as pending while it lacks a signature or carries a
    payout error. The signature is written in the same ledger write that
    clears the error, so once a retry has been recorded a second retry for
    the same round and wallet finds nothing to pay.
    """

    def __init__(
        self,
        ledger: ReplicatedLedger,
        payout_service: PayoutService,
        write_attempts: int = 3,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._ledger = ledger
        self._payout_service = payout_service
        self._write_attempts = max(write_attempts, 1)
        self._logger = logger or logging.getLogger("luckyhaus.payouts")

    async def list_pending(self) -> List[Winner]:
        result = await self._ledger.read()
        if isinstance(result, Unavailable):
            raise LedgerUnavailableError(result.cause)
        if not isinstance(result, Found):
            return []
        return result.document.pending_winners()

    async def retry(self, round_id: str, wallet_address: str) -> RetryResult:
        result = await self._ledger.read()
        if isinstance(result, Unavailable):
            return RetryResult(RetryStatus.UNAVAILABLE, round_id, wallet_address, error=result.cause)

        document = result.document if isinstance(result, Found) else None
        pending = document.pending_winners(round_id, wallet_address) if document else []
        if document is None or not pending:
            self._logger.info("No pending payout for round %s wallet %s", round_id, wallet_address)
            return RetryResult(
                RetryStatus.NOT_FOUND,
                round_id,
                wallet_address,
                error="No pending winners found for this round and address",
            )

        amount = pending[0].prize_amount
        self._logger.info(
            "Retrying payout of %s to %s for round %s (%s pending record(s))",
            amount,
            wallet_address,
            round_id,
            len(pending),
        )
        payout = await request_payout(self._payout_service, wallet_address, amount, self._logger)
        if not payout.success:
            self._logger.warning(
                "Payout retry for round %s wallet %s failed: %s", round_id, wallet_address, payout.error
            )
            return RetryResult(
                RetryStatus.FAILED,
                round_id,
                wallet_address,
                amount=amount,
                error=payout.error or "Payout failed",
            )

        return await self._record(document, round_id, wallet_address, amount, payout.signature)

    async def _record(
        self,
        document: LedgerDocument,
        round_id: str,
        wallet_address: str,
        amount: Decimal,
        signature: str,
    ) -> RetryResult:
        detail = "ledger write failed"
        for _ in range(self._write_attempts):
            matches = document.pending_winners(round_id, wallet_address)
            if not matches:
                detail = "winner records were settled by another writer"
                break
            for winner in matches:
                winner.payout_signature = signature
                winner.payout_error = None

            outcome = await self._ledger.write(document)
            if outcome.ok:
                self._logger.info(
                    "Updated %s winner record(s) for round %s with payout signature %s",
                    len(matches),
                    round_id,
                    signature,
                )
                return RetryResult(
                    RetryStatus.SETTLED,
                    round_id,
                    wallet_address,
                    amount=amount,
                    signature=signature,
                    updated_winners=len(matches),
                )

            detail = outcome.detail or detail
            if outcome.status is not WriteStatus.CONFLICT:
                break
            # apply the same signature to the newer document; never pay again
            reread = await self._ledger.read()
            if not isinstance(reread, Found):
                break
            document = reread.document

        self._logger.error(
            "Payout %s of %s to %s for round %s was sent but not recorded (%s); record it manually",
            signature,
            amount,
            wallet_address,
            round_id,
            detail,
        )
        return RetryResult(
            RetryStatus.UNRECORDED,
            round_id,
            wallet_address,
            amount=amount,
            signature=signature,
            error=detail,
        )
