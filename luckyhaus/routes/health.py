from __future__ import annotations

import asyncio

from flask import Blueprint, jsonify

from .lottery import get_ledger

bp = Blueprint("health", __name__)


async def _probe(ledger) -> dict:
    backends = ledger.backends
    reachable = await asyncio.gather(*(backend.ping() for backend in backends))
    return {backend.name: ok for backend, ok in zip(backends, reachable)}


@bp.get("/health")
def health():
    ledger = get_ledger()
    reachable = asyncio.run(_probe(ledger))
    healthy = all(reachable.values()) and not ledger.uses_fallback
    status = "ok" if healthy else "degraded"
    return jsonify({"status": status, "ledger": ledger.describe(), "reachable": reachable})
