from __future__ import annotations

import datetime as dt
import time
from decimal import ROUND_DOWN, Decimal
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from ..schemas import Round
from ..types import RoundStatus

ROUND_EPOCH = dt.date(2024, 1, 1)
AMOUNT_QUANTUM = Decimal("0.000001")


def now_ms() -> int:
    return int(time.time() * 1000)


def as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _local_now(timezone: str, now: Optional[dt.datetime]) -> dt.datetime:
    tz = ZoneInfo(timezone)
    if now is None:
        return dt.datetime.now(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(tz)


def round_id_for(day: dt.date) -> str:
    return f"round-{day.isoformat()}"


def round_number_for(day: dt.date) -> int:
    return max((day - ROUND_EPOCH).days + 1, 1)


def daily_round(
    timezone: str = "Europe/Amsterdam", now: Optional[dt.datetime] = None, day_offset: int = 0
) -> Round:
    """Round named after the local calendar day, ending at that day's midnight."""
    local = _local_now(timezone, now)
    day = local.date() + dt.timedelta(days=day_offset)
    next_midnight = dt.datetime.combine(day + dt.timedelta(days=1), dt.time(0), tzinfo=local.tzinfo)
    return Round(
        id=round_id_for(day),
        round_number=round_number_for(day),
        pot_size=Decimal("0"),
        total_tickets=0,
        end_time=int(next_midnight.timestamp() * 1000),
        status=RoundStatus.ACTIVE,
    )


def fresh_round(
    timezone: str = "Europe/Amsterdam", hours: int = 24, now: Optional[dt.datetime] = None
) -> Round:
    """Round for a ledger that has never been written, open for `hours`."""
    local = _local_now(timezone, now)
    day = local.date()
    return Round(
        id=round_id_for(day),
        round_number=round_number_for(day),
        pot_size=Decimal("0"),
        total_tickets=0,
        end_time=int((local + dt.timedelta(hours=hours)).timestamp() * 1000),
        status=RoundStatus.ACTIVE,
    )


def commission(amount: Decimal, rate: Decimal) -> Decimal:
    return amount * rate


def pot_contribution(amount: Decimal, rate: Decimal) -> Decimal:
    return amount * (Decimal("1") - rate)


def split_contribution(total: Decimal, quantity: int) -> Decimal:
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    return (total / quantity).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


def contribution_shares(total: Decimal, quantity: int) -> List[Decimal]:
    """Per-ticket pot shares; the last ticket carries the rounding remainder."""
    share = split_contribution(total, quantity)
    return [share] * (quantity - 1) + [total - share * (quantity - 1)]
