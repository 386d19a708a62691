import csv
from collections import defaultdict
from dataclasses import dataclass
from io import StringIO
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import BalanceCategory, WalletAction
from app.ledger import category_sum, category_values
from app.logging_config import get_logger
from app.models import models


logger = get_logger(__name__)


@dataclass(frozen=True)
class Drift:
    user_id: str
    field: str
    ledger_cents: int
    wallet_cents: int

    @property
    def drift_cents(self) -> int:
        return self.wallet_cents - self.ledger_cents


def replay_entries(entries) -> Dict[str, Dict[BalanceCategory, int]]:
    """Sum credits minus debits per user and category over entries that moved a category."""
    totals: Dict[str, Dict[BalanceCategory, int]] = defaultdict(lambda: {c: 0 for c in BalanceCategory})
    for entry in entries:
        if not entry.category or not entry.direction:
            continue
        sign = 1 if entry.direction == WalletAction.CREDIT.value else -1
        totals[entry.user_id][BalanceCategory(entry.category)] += sign * entry.amount_cents
    return totals


def replay_wallet(db: Session, user_id: str) -> Dict[BalanceCategory, int]:
    entries = db.query(models.LedgerEntry).filter(models.LedgerEntry.user_id == user_id).all()
    return replay_entries(entries)[user_id]


def find_drift(db: Session, user_id: Optional[str] = None) -> List[Drift]:
    """
    Compare every live wallet against its replayed ledger.

    Derived fields are checked against the live categories as well. Nothing
    is corrected here; repairs are an explicit operator action.
    """
    wallet_query = db.query(models.Wallet)
    entry_query = db.query(models.LedgerEntry)
    if user_id:
        wallet_query = wallet_query.filter(models.Wallet.user_id == user_id)
        entry_query = entry_query.filter(models.LedgerEntry.user_id == user_id)
    replayed = replay_entries(entry_query.all())
    drifts: List[Drift] = []
    for wallet in wallet_query.order_by(models.Wallet.id).all():
        ledger_totals = replayed[wallet.user_id]
        for category, live in category_values(wallet).items():
            if ledger_totals[category] != live:
                drifts.append(Drift(wallet.user_id, category.value, ledger_totals[category], live))
        expected_aggregate = category_sum(wallet)
        if wallet.balance_cents != expected_aggregate:
            drifts.append(Drift(wallet.user_id, "aggregate", expected_aggregate, wallet.balance_cents))
        if wallet.withdrawable_cents != wallet.main_balance_cents:
            drifts.append(Drift(wallet.user_id, "withdrawable", wallet.main_balance_cents, wallet.withdrawable_cents))
    return drifts


def generate_reconciliation_csv(db: Session) -> Tuple[str, int]:
    """
    Replay the ledger against live wallets and return CSV text plus mismatch count.
    """
    mismatches = find_drift(db)
    logger.info("Reconciliation complete with %s mismatches", len(mismatches))
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["userId", "field", "ledgerCents", "walletCents", "driftCents"])
    for drift in mismatches:
        writer.writerow([drift.user_id, drift.field, drift.ledger_cents, drift.wallet_cents, drift.drift_cents])
    return output.getvalue(), len(mismatches)
