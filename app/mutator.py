import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import (
    STAKE_PRIORITY,
    BalanceCategory,
    DebitPolicy,
    EntryStatus,
    EntryType,
    WalletAction,
    WithdrawalStatus,
    settings,
)
from app.errors import (
    InsufficientFunds,
    InvalidAmount,
    LedgerError,
    UnsupportedCurrency,
    WalletAlreadyExists,
    WithdrawalNotFound,
    WithdrawalNotPending,
    WithdrawalSagaFailure,
)
from app.ledger import WalletLedger, category_values
from app.logging_config import get_logger
from app.models import models
from app.transaction_log import TransactionLog


logger = get_logger(__name__)

_wallet_locks: Dict[str, threading.RLock] = {}
_wallet_locks_guard = threading.Lock()


@contextmanager
def wallet_lock(user_id: str):
    """Serialize every mutation of one wallet within this process."""
    with _wallet_locks_guard:
        lock = _wallet_locks.setdefault(user_id, threading.RLock())
    with lock:
        yield


@dataclass(frozen=True)
class Adjustment:
    category: BalanceCategory
    direction: WalletAction
    requested_cents: int
    applied_cents: int

    @property
    def shortfall_cents(self) -> int:
        return self.requested_cents - self.applied_cents


@dataclass(frozen=True)
class StakeDeduction:
    requested_cents: int
    collected_cents: int
    parts: Tuple[Tuple[BalanceCategory, int], ...]

    @property
    def category(self) -> BalanceCategory:
        return self.parts[0][0]


def plan_stake(
    values: Dict[BalanceCategory, int], amount_cents: int, policy: DebitPolicy
) -> Optional[List[Tuple[BalanceCategory, int]]]:
    """
    Decide which stake categories pay `amount_cents`, or None when the four
    stake categories together cannot cover it.

    The first category in priority order that covers the whole amount pays it.
    Otherwise the clamp policy takes the whole amount from the single largest
    category (ties go to the higher priority), flooring it at zero; the strict
    policy splits the amount across categories in priority order.
    """
    available = sum(values[category] for category in STAKE_PRIORITY)
    if available < amount_cents:
        return None
    for category in STAKE_PRIORITY:
        if values[category] >= amount_cents:
            return [(category, amount_cents)]
    if policy == DebitPolicy.STRICT:
        parts = []
        remaining = amount_cents
        for category in STAKE_PRIORITY:
            take = min(values[category], remaining)
            if take:
                parts.append((category, take))
                remaining -= take
            if not remaining:
                break
        return parts
    largest = max(STAKE_PRIORITY, key=lambda category: values[category])
    return [(largest, min(values[largest], amount_cents))]


class BalanceMutator:
    """The only path through which wallet category values change."""

    def __init__(self, db: Session, policy: Optional[DebitPolicy] = None):
        self.db = db
        self.ledger = WalletLedger(db)
        self.log = TransactionLog(db)
        self.policy = DebitPolicy(policy or settings.debit_policy)

    def open_wallet(
        self,
        user_id: str,
        currency: Optional[str] = None,
        referrer_user_id: Optional[str] = None,
    ) -> models.Wallet:
        currency = currency or settings.default_currency
        if currency not in settings.supported_currencies:
            raise UnsupportedCurrency(f"unsupported currency {currency}")
        with wallet_lock(user_id):
            existing = self.db.query(models.Wallet).filter(models.Wallet.user_id == user_id).first()
            if existing:
                raise WalletAlreadyExists(user_id)
            referrer = None
            if referrer_user_id and referrer_user_id != user_id:
                referrer = (
                    self.db.query(models.Wallet)
                    .filter(models.Wallet.user_id == referrer_user_id)
                    .first()
                )
            wallet = models.Wallet(
                user_id=user_id,
                currency=currency,
                referrer_user_id=referrer.user_id if referrer else None,
                balance_cents=0,
                withdrawable_cents=0,
                **{category.column: 0 for category in BalanceCategory},
            )
            try:
                self.db.add(wallet)
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise WalletAlreadyExists(user_id) from exc
            logger.info(
                "Opened wallet user=%s currency=%s referrer=%s",
                user_id,
                currency,
                wallet.referrer_user_id,
            )
            bonus_cents = settings.signup_bonus_cents
            if referrer:
                bonus_cents += int(bonus_cents * settings.referral_signup_bonus_rate)
            if bonus_cents > 0:
                adjustment = self.adjust(user_id, BalanceCategory.BONUS, bonus_cents, WalletAction.CREDIT)
                self.record(user_id, adjustment, EntryType.BONUS, "Welcome Bonus")
            self.db.refresh(wallet)
        return wallet

    def adjust(
        self,
        user_id: str,
        category: BalanceCategory,
        amount_cents: int,
        direction: WalletAction,
        policy: Optional[DebitPolicy] = None,
    ) -> Adjustment:
        category = BalanceCategory(category)
        direction = WalletAction(direction)
        policy = DebitPolicy(policy or self.policy)
        if amount_cents <= 0:
            raise InvalidAmount("amount must be positive")
        with wallet_lock(user_id):
            wallet = self.ledger.get_wallet(user_id, for_update=True)
            current = getattr(wallet, category.column) or 0
            if direction == WalletAction.CREDIT:
                applied = amount_cents
                setattr(wallet, category.column, current + amount_cents)
            else:
                if current < amount_cents and policy == DebitPolicy.STRICT:
                    self.db.rollback()
                    raise InsufficientFunds(user_id, amount_cents, current)
                applied = min(current, amount_cents)
                setattr(wallet, category.column, current - applied)
            self.ledger.reconcile_aggregate(wallet, commit=False)
            self.db.commit()
        adjustment = Adjustment(category, direction, amount_cents, applied)
        logger.info(
            "Adjusted wallet user=%s category=%s direction=%s requested_cents=%s applied_cents=%s",
            user_id,
            category.value,
            direction.value,
            amount_cents,
            applied,
        )
        if adjustment.shortfall_cents:
            logger.warning(
                "Debit clamped at zero user=%s category=%s shortfall_cents=%s",
                user_id,
                category.value,
                adjustment.shortfall_cents,
            )
        return adjustment

    def record(
        self,
        user_id: str,
        adjustment: Adjustment,
        entry_type: EntryType,
        description: str,
        status: EntryStatus = EntryStatus.SUCCESS,
    ) -> Optional[models.LedgerEntry]:
        if not adjustment.applied_cents:
            return None
        return self.log.append(
            user_id,
            entry_type,
            adjustment.applied_cents,
            description,
            category=adjustment.category,
            direction=adjustment.direction,
            status=status,
        )

    def deduct_for_stake(
        self,
        user_id: str,
        amount_cents: int,
        description: str = "Stake",
        policy: Optional[DebitPolicy] = None,
    ) -> StakeDeduction:
        policy = DebitPolicy(policy or self.policy)
        if amount_cents <= 0:
            raise InvalidAmount("stake must be positive")
        with wallet_lock(user_id):
            wallet = self.ledger.get_wallet(user_id, for_update=True)
            values = category_values(wallet)
            parts = plan_stake(values, amount_cents, policy)
            if parts is None:
                self.db.rollback()
                available = sum(values[category] for category in STAKE_PRIORITY)
                raise InsufficientFunds(user_id, amount_cents, available)
            for category, take in parts:
                setattr(wallet, category.column, values[category] - take)
            self.ledger.reconcile_aggregate(wallet, commit=False)
            self.db.commit()
        deduction = StakeDeduction(amount_cents, sum(take for _, take in parts), tuple(parts))
        logger.info(
            "Deducted stake user=%s requested_cents=%s collected_cents=%s parts=%s",
            user_id,
            amount_cents,
            deduction.collected_cents,
            [(category.value, take) for category, take in parts],
        )
        if deduction.collected_cents < amount_cents:
            logger.warning(
                "Stake under-collected user=%s category=%s shortfall_cents=%s",
                user_id,
                deduction.category.value,
                amount_cents - deduction.collected_cents,
            )
        for category, take in parts:
            if take:
                self.log.append(
                    user_id,
                    EntryType.STAKE,
                    take,
                    description,
                    category=category,
                    direction=WalletAction.DEBIT,
                )
        return deduction

    def withdraw(self, user_id: str, amount_cents: int, destination: str) -> models.WithdrawalRequest:
        """
        Two-step withdrawal saga: create a pending request, then debit `main`.

        If the debit fails the pending request is deleted again (compensation)
        and WithdrawalSagaFailure is raised; the wallet is left untouched.
        """
        if amount_cents < settings.min_withdraw_cents:
            raise InvalidAmount(f"minimum withdrawal is {settings.min_withdraw_cents} cents")
        with wallet_lock(user_id):
            wallet = self.ledger.get_wallet(user_id)
            if wallet.main_balance_cents < amount_cents:
                raise InsufficientFunds(user_id, amount_cents, wallet.main_balance_cents)
            request = models.WithdrawalRequest(
                user_id=user_id,
                amount_cents=amount_cents,
                destination=destination,
                status=WithdrawalStatus.PENDING.value,
            )
            self.db.add(request)
            self.db.commit()
            self.db.refresh(request)
            logger.info(
                "Created pending withdrawal id=%s user=%s amount_cents=%s",
                request.id,
                user_id,
                amount_cents,
            )
            try:
                adjustment = self.adjust(
                    user_id, BalanceCategory.MAIN, amount_cents, WalletAction.DEBIT, policy=DebitPolicy.STRICT
                )
            except (LedgerError, SQLAlchemyError) as exc:
                self.db.rollback()
                request_id = request.id
                self._compensate_withdrawal(request)
                raise WithdrawalSagaFailure(user_id, request_id) from exc
        self.record(
            user_id,
            adjustment,
            EntryType.WITHDRAWAL,
            f"Withdrawal #{request.id} to {destination}",
            status=EntryStatus.PENDING,
        )
        return request

    def _compensate_withdrawal(self, request: models.WithdrawalRequest) -> None:
        request_id = request.id
        try:
            self.db.delete(request)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Withdrawal compensation failed id=%s user=%s error=%s; pending record is orphaned",
                request_id,
                request.user_id,
                exc,
            )
            return
        logger.warning(
            "Compensated withdrawal id=%s user=%s by deleting the pending record",
            request_id,
            request.user_id,
        )

    def orphaned_withdrawals(self) -> List[models.WithdrawalRequest]:
        """Pending requests whose `main` debit was never recorded."""
        pending = (
            self.db.query(models.WithdrawalRequest)
            .filter(models.WithdrawalRequest.status == WithdrawalStatus.PENDING.value)
            .order_by(models.WithdrawalRequest.id)
            .all()
        )
        orphans = []
        for request in pending:
            recorded = (
                self.db.query(models.LedgerEntry)
                .filter(models.LedgerEntry.user_id == request.user_id)
                .filter(models.LedgerEntry.type == EntryType.WITHDRAWAL.value)
                .filter(models.LedgerEntry.description.like(f"Withdrawal #{request.id} %"))
                .first()
            )
            if not recorded:
                orphans.append(request)
        return orphans

    @contextmanager
    def _pending_withdrawal(self, request_id: int):
        """
        Yield a pending request re-read and status-checked under its owner's wallet lock.
        """
        request = self.db.get(models.WithdrawalRequest, request_id)
        if not request:
            raise WithdrawalNotFound(f"withdrawal {request_id} not found")
        with wallet_lock(request.user_id):
            request = (
                self.db.query(models.WithdrawalRequest)
                .filter(models.WithdrawalRequest.id == request_id)
                .with_for_update()
                .populate_existing()
                .one()
            )
            if request.status != WithdrawalStatus.PENDING.value:
                self.db.rollback()
                raise WithdrawalNotPending(f"withdrawal {request_id} is already {request.status}")
            yield request

    def approve_withdrawal(self, request_id: int) -> models.WithdrawalRequest:
        with self._pending_withdrawal(request_id) as request:
            request.status = WithdrawalStatus.APPROVED.value
            request.processed_at = datetime.now(timezone.utc)
            self.db.add(request)
            self.db.commit()
            self.db.refresh(request)
        self.log.append(
            request.user_id,
            EntryType.WITHDRAWAL,
            request.amount_cents,
            f"Withdrawal #{request.id} approved",
            status=EntryStatus.SUCCESS,
        )
        logger.info("Approved withdrawal id=%s user=%s", request.id, request.user_id)
        return request

    def reject_withdrawal(self, request_id: int) -> models.WithdrawalRequest:
        with self._pending_withdrawal(request_id) as request:
            request.status = WithdrawalStatus.REJECTED.value
            request.processed_at = datetime.now(timezone.utc)
            self.db.add(request)
            self.db.commit()
            adjustment = self.adjust(
                request.user_id, BalanceCategory.MAIN, request.amount_cents, WalletAction.CREDIT
            )
        self.record(request.user_id, adjustment, EntryType.REFUND, f"Withdrawal #{request.id} rejected")
        self.db.refresh(request)
        logger.info("Rejected withdrawal id=%s user=%s refunded_cents=%s", request.id, request.user_id, request.amount_cents)
        return request
