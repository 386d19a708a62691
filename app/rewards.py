from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import BalanceCategory, EntryType, WalletAction, settings
from app.errors import BonusAlreadyClaimed, InvalidAmount
from app.ledger import WalletLedger
from app.logging_config import get_logger
from app.models import models
from app.mutator import BalanceMutator


logger = get_logger(__name__)

DAILY_BONUS_PREFIX = "Daily Login Bonus"


def claim_daily_bonus(db: Session, user_id: str, day: int) -> int:
    """Credit the login bonus for `day` of the weekly ladder, once per UTC day."""
    ladder = settings.daily_bonus_ladder_cents
    if not 1 <= day <= len(ladder):
        raise InvalidAmount(f"day must be between 1 and {len(ladder)}")
    WalletLedger(db).get_wallet(user_id)
    last = (
        db.query(models.LedgerEntry)
        .filter(models.LedgerEntry.user_id == user_id)
        .filter(models.LedgerEntry.type == EntryType.BONUS.value)
        .filter(models.LedgerEntry.description.like(f"{DAILY_BONUS_PREFIX}%"))
        .order_by(models.LedgerEntry.id.desc())
        .first()
    )
    today = datetime.now(timezone.utc).date()
    if last and last.created_at and last.created_at.date() == today:
        raise BonusAlreadyClaimed(f"daily bonus already claimed on {today.isoformat()}")
    amount_cents = ladder[day - 1]
    mutator = BalanceMutator(db)
    adjustment = mutator.adjust(user_id, BalanceCategory.BONUS, amount_cents, WalletAction.CREDIT)
    mutator.record(user_id, adjustment, EntryType.BONUS, f"{DAILY_BONUS_PREFIX} (Day {day})")
    logger.info("Daily bonus claimed user=%s day=%s amount_cents=%s", user_id, day, amount_cents)
    return amount_cents


def distribute_referral_commission(db: Session, user_id: str, profit_cents: int) -> Optional[int]:
    """
    Credit the referrer's commission category with a share of `profit_cents`.

    Returns the commission paid, or None when nothing was owed.
    """
    if profit_cents <= 0:
        return None
    wallet = WalletLedger(db).get_wallet(user_id)
    if not wallet.referrer_user_id:
        return None
    commission_cents = int(profit_cents * settings.referral_commission_percent / 100)
    if commission_cents <= 0:
        return None
    mutator = BalanceMutator(db)
    adjustment = mutator.adjust(
        wallet.referrer_user_id, BalanceCategory.COMMISSION, commission_cents, WalletAction.CREDIT
    )
    mutator.record(
        wallet.referrer_user_id,
        adjustment,
        EntryType.REFERRAL,
        f"{settings.referral_commission_percent:g}% Commission from {user_id}",
    )
    logger.info(
        "Referral commission paid referrer=%s referred=%s commission_cents=%s",
        wallet.referrer_user_id,
        user_id,
        commission_cents,
    )
    return commission_cents
