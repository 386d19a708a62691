from pathlib import Path

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.logging_config import get_logger
from app.reconciliation import generate_reconciliation_csv

logger = get_logger(__name__)


def reconcile(output_path: str = "reconciliation.csv") -> int:
    db: Session = SessionLocal()
    try:
        csv_text, mismatch_count = generate_reconciliation_csv(db)
    finally:
        db.close()
    Path(output_path).write_text(csv_text, newline="")
    logger.info("Wrote reconciliation report path=%s mismatches=%s", output_path, mismatch_count)
    return 1 if mismatch_count else 0

if __name__ == "__main__":
    exit_code = reconcile()
    raise SystemExit(exit_code)
