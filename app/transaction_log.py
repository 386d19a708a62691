from collections import deque
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import BalanceCategory, EntryStatus, EntryType, WalletAction
from app.errors import LogWriteFailure
from app.logging_config import get_logger
from app.models import models


logger = get_logger(__name__)

_recent_failures: deque = deque(maxlen=100)


def recent_failures() -> List[LogWriteFailure]:
    return list(_recent_failures)


class TransactionLog:
    """
    Append-only audit trail of balance-affecting events.

    Appends are best-effort: they run after the balance mutation has been
    committed, and a failed write is reported without touching the wallet.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        user_id: str,
        entry_type: EntryType,
        amount_cents: int,
        description: str,
        category: Optional[BalanceCategory] = None,
        direction: Optional[WalletAction] = None,
        status: EntryStatus = EntryStatus.SUCCESS,
    ) -> Optional[models.LedgerEntry]:
        entry = models.LedgerEntry(
            user_id=user_id,
            type=EntryType(entry_type).value,
            amount_cents=amount_cents,
            category=BalanceCategory(category).value if category else None,
            direction=WalletAction(direction).value if direction else None,
            status=EntryStatus(status).value,
            description=description,
        )
        try:
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
        except SQLAlchemyError as exc:
            self.db.rollback()
            failure = LogWriteFailure(user_id, EntryType(entry_type).value, exc)
            _recent_failures.append(failure)
            logger.error(
                "Ledger append failed user=%s type=%s amount_cents=%s error=%s",
                user_id,
                entry.type,
                amount_cents,
                exc,
            )
            return None
        logger.info(
            "Appended ledger entry id=%s user=%s type=%s amount_cents=%s category=%s",
            entry.id,
            user_id,
            entry.type,
            amount_cents,
            entry.category,
        )
        return entry

    def history(self, user_id: str, limit: int = 50) -> List[models.LedgerEntry]:
        return (
            self.db.query(models.LedgerEntry)
            .filter(models.LedgerEntry.user_id == user_id)
            .order_by(models.LedgerEntry.id.desc())
            .limit(limit)
            .all()
        )
