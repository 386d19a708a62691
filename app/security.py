import hmac
from typing import Optional

from fastapi import Header, HTTPException

from app.config import settings


def _check_bearer(authorization: Optional[str], expected: Optional[str]) -> None:
    if not expected:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_service_token(authorization: str | None = Header(None, alias="Authorization")):
    """
    FastAPI dependency for game modules calling the ledger; disabled when no token is configured.
    """
    _check_bearer(authorization, settings.service_token)


def require_admin_token(authorization: str | None = Header(None, alias="Authorization")):
    """
    FastAPI dependency for administrative tooling: adjustments, withdrawals, reconciliation.
    """
    _check_bearer(authorization, settings.admin_token)
