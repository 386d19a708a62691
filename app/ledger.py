from dataclasses import dataclass
from typing import Dict, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import BalanceCategory
from app.errors import WalletNotFound
from app.logging_config import get_logger
from app.models import models


logger = get_logger(__name__)


@dataclass(frozen=True)
class PlayerStanding:
    aggregate_cents: int
    lifetime_net_profit_cents: int


def category_values(wallet: models.Wallet) -> Dict[BalanceCategory, int]:
    return {category: getattr(wallet, category.column) or 0 for category in BalanceCategory}


def category_sum(wallet: models.Wallet) -> int:
    return sum(category_values(wallet).values())


class WalletLedger:
    """Single source of truth for a user's categorized funds."""

    def __init__(self, db: Session):
        self.db = db

    def get_wallet(self, user_id: str, for_update: bool = False) -> models.Wallet:
        query = self.db.query(models.Wallet).filter(models.Wallet.user_id == user_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        wallet = query.first()
        if not wallet:
            raise WalletNotFound(user_id)
        return wallet

    def get_aggregate(self, user_id: str) -> int:
        return category_sum(self.get_wallet(user_id))

    def reconcile_aggregate(self, wallet_or_user: Union[str, models.Wallet], commit: bool = True) -> models.Wallet:
        """
        Recompute the derived fields from the live categories.

        Called after every category mutation; `commit=False` leaves the write
        inside the caller's unit of work.
        """
        wallet = self.get_wallet(wallet_or_user) if isinstance(wallet_or_user, str) else wallet_or_user
        aggregate = category_sum(wallet)
        if wallet.balance_cents != aggregate or wallet.withdrawable_cents != wallet.main_balance_cents:
            logger.info(
                "Reconciling aggregate user=%s balance_cents=%s->%s withdrawable_cents=%s->%s",
                wallet.user_id,
                wallet.balance_cents,
                aggregate,
                wallet.withdrawable_cents,
                wallet.main_balance_cents,
            )
        wallet.balance_cents = aggregate
        wallet.withdrawable_cents = wallet.main_balance_cents
        self.db.add(wallet)
        if commit:
            self.db.commit()
            self.db.refresh(wallet)
        else:
            self.db.flush()
        return wallet

    def lifetime_net_profit(self, user_id: str) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(models.GameRecord.profit_cents), 0))
            .filter(models.GameRecord.user_id == user_id)
            .scalar()
        )
        return int(total or 0)

    def standing(self, user_id: str) -> PlayerStanding:
        return PlayerStanding(
            aggregate_cents=self.get_aggregate(user_id),
            lifetime_net_profit_cents=self.lifetime_net_profit(user_id),
        )
