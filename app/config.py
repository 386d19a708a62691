from enum import Enum
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class DebitPolicy(str, Enum):
    CLAMP = "clamp"
    STRICT = "strict"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    db_url: str = "sqlite:///./ledger.db"
    service_token: Optional[str] = None
    admin_token: Optional[str] = None
    log_level: str = "INFO"
    default_currency: str = "USD"
    supported_currencies: list[str] = ["USD", "EUR", "BDT"]
    signup_bonus_cents: int = 500
    referral_signup_bonus_rate: float = 0.25
    referral_commission_percent: float = 5.0
    game_profit_fee_percent: float = 5.0
    daily_bonus_ladder_cents: list[int] = [10, 20, 30, 40, 50, 75, 100]
    min_stake_cents: int = 100
    max_stake_cents: int = 1_000_000
    min_withdraw_cents: int = 1_000
    debit_policy: DebitPolicy = DebitPolicy.CLAMP

settings = Settings()


class BalanceCategory(str, Enum):
    MAIN = "main"
    DEPOSIT = "deposit"
    GAME = "game"
    EARNING = "earning"
    INVESTMENT = "investment"
    REFERRAL = "referral"
    COMMISSION = "commission"
    BONUS = "bonus"

    @property
    def column(self) -> str:
        return f"{self.value}_balance_cents"


# Categories a stake may be drawn from, in the order they are tried.
STAKE_PRIORITY = (
    BalanceCategory.GAME,
    BalanceCategory.BONUS,
    BalanceCategory.DEPOSIT,
    BalanceCategory.MAIN,
)


class WalletAction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class EntryType(str, Enum):
    DEPOSIT = "deposit"
    STAKE = "stake"
    PAYOUT = "payout"
    FEE = "fee"
    LOSS = "loss"
    BONUS = "bonus"
    PENALTY = "penalty"
    REFERRAL = "referral"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class EntryStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
