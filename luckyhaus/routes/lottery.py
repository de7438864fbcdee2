from __future__ import annotations

import asyncio
import secrets
from functools import lru_cache

from flask import Blueprint, current_app, jsonify, request

from ..config import load_settings
from ..schemas import Ticket, TicketPurchaseRequest
from ..services.ledger import ReplicatedLedger, build_ledger
from ..services.operations import LedgerOperations
from ..services.payouts import HttpPayoutService, PayoutService
from ..services.rounds import contribution_shares, daily_round, now_ms, pot_contribution

bp = Blueprint("lottery", __name__)


@lru_cache(maxsize=1)
def get_ledger() -> ReplicatedLedger:
    settings = load_settings()
    return asyncio.run(build_ledger(settings))


@lru_cache(maxsize=1)
def get_payout_service() -> PayoutService:
    settings = load_settings()
    return HttpPayoutService(settings.payout)


def get_operations() -> LedgerOperations:
    settings = load_settings()
    return LedgerOperations(get_ledger(), settings.lottery)


@bp.get("/current-round")
def current_round():
    round_ = asyncio.run(get_operations().current_round())
    if round_ is None:
        settings = load_settings()
        round_ = daily_round(settings.lottery.round_timezone)
        current_app.logger.info("No stored round; returning default round %s", round_.id)
    return jsonify({"success": True, "round": round_.to_payload()})


@bp.get("/recent-winners")
def recent_winners():
    try:
        limit = int(request.args.get("limit", "10"))
    except ValueError:
        return jsonify({"success": False, "error": "invalid limit"}), 400
    winners = asyncio.run(get_operations().recent_winners(limit))
    return jsonify({"success": True, "winners": [winner.to_payload() for winner in winners]})


@bp.get("/user-tickets")
def user_tickets():
    wallet = request.args.get("wallet")
    round_id = request.args.get("roundId")
    if not wallet or not round_id:
        return jsonify({"success": False, "error": "Missing wallet or roundId"}), 400
    tickets = asyncio.run(get_operations().user_tickets(wallet, round_id))
    return jsonify({"success": True, "tickets": [ticket.to_payload() for ticket in tickets]})


@bp.post("/tickets")
def purchase_tickets():
    payload = request.get_json(force=True, silent=True) or {}
    data = TicketPurchaseRequest.model_validate(payload)

    settings = load_settings()
    contribution = pot_contribution(data.amount, settings.lottery.house_commission)
    shares = contribution_shares(contribution, data.quantity)
    current_app.logger.info(
        "Purchase of %s ticket(s) by %s: %s paid, %s to pot",
        data.quantity,
        data.wallet_address,
        data.amount,
        contribution,
    )

    operations = get_operations()
    base_timestamp = now_ms()
    ticket_ids = []
    for index in range(data.quantity):
        ticket = Ticket(
            id=f"ticket-{base_timestamp}-{index}-{secrets.token_hex(4)}",
            wallet_address=data.wallet_address,
            round_id=data.round_id,
            timestamp=base_timestamp + index,
            transaction_signature=data.transaction_signature,
        )
        if not asyncio.run(operations.add_ticket(ticket, shares[index])):
            current_app.logger.error("Failed to save ticket %s of %s", index + 1, data.quantity)
            return (
                jsonify(
                    {
                        "success": False,
                        "error": "Failed to save some tickets to storage",
                        "ticketIds": ticket_ids,
                    }
                ),
                503,
            )
        ticket_ids.append(ticket.id)

    return (
        jsonify(
            {
                "success": True,
                "message": "Ticket purchased successfully",
                "ticketIds": ticket_ids,
                "potContribution": float(contribution),
            }
        ),
        201,
    )
