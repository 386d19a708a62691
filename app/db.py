from typing import Optional

from sqlalchemy.orm import Session

from app.errors import IdempotencyConflict
from app.models import models


def get_idempotent_response(db: Session, key: str, body_hash: str) -> Optional[dict]:
    """Return the stored response for a replayed key, or None for a new key."""
    existing = db.query(models.IdempotencyKey).filter_by(key=key).first()
    if existing:
        if existing.request_hash != body_hash:
            raise IdempotencyConflict(f"idempotency key {key} was used for a different request")
        return existing.response_body
    return None


def store_idempotency(db: Session, key: str, body_hash: str, response_body: dict) -> dict:
    record = models.IdempotencyKey(key=key, request_hash=body_hash, response_body=response_body)
    db.add(record)
    db.commit()
    return response_body
