from __future__ import annotations

import asyncio

from flask import Blueprint, current_app, jsonify, request

from ..config import load_settings
from ..schemas import PendingPayoutResponse, RetryPayoutRequest, Round
from ..services.draws import DrawService
from ..services.payouts import PayoutReconciler, RetryStatus
from .lottery import get_ledger, get_operations, get_payout_service

bp = Blueprint("admin", __name__)

RETRY_STATUS_CODES = {
    RetryStatus.SETTLED: 200,
    RetryStatus.NOT_FOUND: 404,
    RetryStatus.FAILED: 502,
    RetryStatus.UNRECORDED: 500,
    RetryStatus.UNAVAILABLE: 503,
}


def get_reconciler() -> PayoutReconciler:
    settings = load_settings()
    return PayoutReconciler(
        get_ledger(),
        get_payout_service(),
        write_attempts=settings.lottery.write_attempts,
    )


def _require_admin() -> bool:
    settings = load_settings()
    api_key = settings.admin_api_key
    if api_key:
        provided = request.headers.get("X-Admin-Token")
        if provided != api_key:
            return False
    return True


@bp.before_request
def verify_admin():
    if not _require_admin():
        return jsonify({"success": False, "error": "unauthorized"}), 401
    return None


@bp.get("/pending-payouts")
def list_pending_payouts():
    pending = asyncio.run(get_reconciler().list_pending())
    return jsonify(
        {
            "success": True,
            "pendingWinners": [PendingPayoutResponse.from_winner(w).to_payload() for w in pending],
            "count": len(pending),
        }
    )


@bp.post("/retry-payout")
def retry_payout():
    payload = request.get_json(force=True, silent=True) or {}
    data = RetryPayoutRequest.model_validate(payload)

    current_app.logger.info(
        "Admin retry payout for round %s, winner %s", data.round_id, data.winner_address
    )
    result = asyncio.run(get_reconciler().retry(data.round_id, data.winner_address))
    return jsonify(result.to_payload()), RETRY_STATUS_CODES[result.status]


@bp.post("/rounds/<round_id>/end")
def end_round(round_id: str):
    service = DrawService(get_operations(), get_payout_service())
    try:
        outcome = asyncio.run(service.end_round(round_id))
    except LookupError as exc:
        return jsonify({"success": False, "error": str(exc)}), 404
    return jsonify(outcome.to_payload()), 200 if outcome.persisted else 500


@bp.put("/round")
def set_round():
    payload = request.get_json(force=True, silent=True) or {}
    round_ = Round.model_validate(payload)
    if not asyncio.run(get_operations().set_round(round_)):
        return jsonify({"success": False, "error": "Failed to store round"}), 503
    return jsonify({"success": True, "round": round_.to_payload()})
