from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _decimal_from_env(value: Optional[str], default: str) -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(value)


def _optional(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "luckyhaus-dev-secret"
    debug: bool = True


@dataclass(frozen=True)
class PrimaryStoreSettings:
    database_url: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.database_url)


@dataclass(frozen=True)
class BackupStoreSettings:
    github_token: Optional[str] = None
    gist_id: Optional[str] = None
    filename: str = "lottery-data.json"
    api_url: str = "https://api.github.com"
    timeout_seconds: int = 10

    @property
    def configured(self) -> bool:
        return bool(self.github_token)


@dataclass(frozen=True)
class PayoutSettings:
    url: Optional[str] = None
    api_token: Optional[str] = None
    timeout_seconds: int = 60


@dataclass(frozen=True)
class LotterySettings:
    ledger_id: str = "luckyhaus"
    house_commission: Decimal = Decimal("0.05")
    default_ticket_amount: Decimal = Decimal("0.01")
    round_timezone: str = "Europe/Amsterdam"
    round_hours: int = 24
    write_attempts: int = 3
    max_tickets: int = 100000


@dataclass(frozen=True)
class AppSettings:
    flask: FlaskSettings = field(default_factory=FlaskSettings)
    primary: PrimaryStoreSettings = field(default_factory=PrimaryStoreSettings)
    backup: BackupStoreSettings = field(default_factory=BackupStoreSettings)
    payout: PayoutSettings = field(default_factory=PayoutSettings)
    lottery: LotterySettings = field(default_factory=LotterySettings)
    admin_api_key: Optional[str] = None


def load_from_environment() -> AppSettings:
    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "luckyhaus-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
    )

    primary = PrimaryStoreSettings(database_url=_optional("DATABASE_URL"))

    backup = BackupStoreSettings(
        github_token=_optional("GITHUB_TOKEN"),
        gist_id=_optional("LOTTERY_GIST_ID"),
        filename=os.getenv("LOTTERY_GIST_FILENAME", "lottery-data.json"),
        api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        timeout_seconds=_int_from_env(os.getenv("BACKUP_TIMEOUT_SECONDS"), 10),
    )

    payout = PayoutSettings(
        url=_optional("PAYOUT_SERVICE_URL"),
        api_token=_optional("PAYOUT_API_TOKEN"),
        timeout_seconds=_int_from_env(os.getenv("PAYOUT_TIMEOUT_SECONDS"), 60),
    )

    lottery = LotterySettings(
        ledger_id=os.getenv("LEDGER_ID", "luckyhaus"),
        house_commission=_decimal_from_env(os.getenv("HOUSE_COMMISSION"), "0.05"),
        default_ticket_amount=_decimal_from_env(os.getenv("DEFAULT_TICKET_AMOUNT"), "0.01"),
        round_timezone=os.getenv("ROUND_TIMEZONE", "Europe/Amsterdam"),
        write_attempts=max(_int_from_env(os.getenv("WRITE_ATTEMPTS"), 3), 1),
        max_tickets=_int_from_env(os.getenv("MAX_TICKETS"), 100000),
    )

    return AppSettings(
        flask=flask_settings,
        primary=primary,
        backup=backup,
        payout=payout,
        lottery=lottery,
        admin_api_key=_optional("ADMIN_API_KEY"),
    )


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()
    return load_from_environment()
