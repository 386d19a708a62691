from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import WalletAction
from app.database import engine, get_db
from app.db import get_idempotent_response, store_idempotency
from app.errors import LedgerError
from app.games import GAMES
from app.helpers import (
    hash_request,
    serialize_entry,
    serialize_round_slot,
    serialize_round_state,
    serialize_settlement,
    serialize_wallet,
    serialize_withdrawal,
)
from app.ledger import WalletLedger
from app.logging_config import get_logger
from app.models import models
from app.mutator import BalanceMutator
from app.outcome import OutcomeDirector
from app.reconciliation import generate_reconciliation_csv
from app.rewards import claim_daily_bonus
from app.round_clock import RoundClock
from app.schemas.app_schemas import (
    AdjustRequest,
    AdjustResponse,
    DailyBonusRequest,
    OpenWalletRequest,
    RoundStateResponse,
    StakeRequest,
    StakeResponse,
    WalletResponse,
    WithdrawalResponse,
    WithdrawRequest,
)
from app.security import require_admin_token, require_service_token
from app.settlement import GameSettlement
from app.transaction_log import TransactionLog, recent_failures


logger = get_logger(__name__)

models.Base.metadata.create_all(bind=engine)
app = FastAPI(title="Ledger & Outcome Engine")

director = OutcomeDirector()
round_clock = RoundClock()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning(
        "Ledger error path=%s error=%s detail=%s",
        request.url.path,
        type(exc).__name__,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _idempotent(db: Session, idempotency_key: str | None, scope: str, body: dict):
    if not idempotency_key:
        return None, None
    body_hash = hash_request({"scope": scope, "body": body})
    return get_idempotent_response(db, idempotency_key, body_hash), body_hash


@app.post("/wallets", response_model=WalletResponse)
async def open_wallet(
    request: OpenWalletRequest,
    _auth=Depends(require_service_token),
    db: Session = Depends(get_db),
):
    wallet = BalanceMutator(db).open_wallet(request.playerId, request.currency, request.referrerId)
    return serialize_wallet(wallet)


@app.get("/wallets/{player_id}", response_model=WalletResponse)
async def get_wallet(player_id: str, _auth=Depends(require_service_token), db: Session = Depends(get_db)):
    return serialize_wallet(WalletLedger(db).get_wallet(player_id))


@app.get("/wallets/{player_id}/transactions")
async def list_transactions(
    player_id: str,
    limit: int = Query(50, ge=1, le=500),
    _auth=Depends(require_service_token),
    db: Session = Depends(get_db),
):
    WalletLedger(db).get_wallet(player_id)
    return [serialize_entry(e) for e in TransactionLog(db).history(player_id, limit)]


@app.post("/wallets/{player_id}/reconcile", response_model=WalletResponse)
async def reconcile_wallet(player_id: str, _auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    """
    Operator repair: recompute aggregate and withdrawable from the live categories.
    """
    wallet = WalletLedger(db).reconcile_aggregate(player_id)
    return serialize_wallet(wallet)


@app.post("/wallets/{player_id}/withdrawals", response_model=WithdrawalResponse)
async def request_withdrawal(
    player_id: str,
    request: WithdrawRequest,
    _auth=Depends(require_service_token),
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(None),
):
    body = request.model_dump()
    existing, body_hash = _idempotent(db, idempotency_key, f"withdraw:{player_id}", body)
    if existing:
        return existing
    withdrawal = BalanceMutator(db).withdraw(player_id, request.amountCents, request.destination)
    response = serialize_withdrawal(withdrawal)
    if idempotency_key:
        store_idempotency(db, idempotency_key, body_hash, response)
    return response


@app.post("/wallets/{player_id}/daily-bonus")
async def daily_bonus(
    player_id: str,
    request: DailyBonusRequest,
    _auth=Depends(require_service_token),
    db: Session = Depends(get_db),
):
    amount_cents = claim_daily_bonus(db, player_id, request.day)
    return {"amountCents": amount_cents, "wallet": serialize_wallet(WalletLedger(db).get_wallet(player_id))}


@app.post("/wallets/{player_id}/{wallet_action}", response_model=AdjustResponse)
async def adjust_wallet(
    player_id: str,
    wallet_action: WalletAction,
    request: AdjustRequest,
    _auth=Depends(require_admin_token),
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(None),
):
    body = request.model_dump(mode="json")
    existing, body_hash = _idempotent(db, idempotency_key, f"{wallet_action.value}:{player_id}", body)
    if existing:
        return existing
    mutator = BalanceMutator(db)
    adjustment = mutator.adjust(player_id, request.category, request.amountCents, wallet_action)
    mutator.record(
        player_id,
        adjustment,
        request.entryType,
        request.description or f"Manual {wallet_action.value} of {request.category.value}",
    )
    response = {
        "category": adjustment.category.value,
        "direction": adjustment.direction.value,
        "requestedCents": adjustment.requested_cents,
        "appliedCents": adjustment.applied_cents,
        "wallet": serialize_wallet(WalletLedger(db).get_wallet(player_id)),
    }
    if idempotency_key:
        store_idempotency(db, idempotency_key, body_hash, response)
    return response


@app.post("/withdrawals/{request_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(request_id: int, _auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    return serialize_withdrawal(BalanceMutator(db).approve_withdrawal(request_id))


@app.post("/withdrawals/{request_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(request_id: int, _auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    return serialize_withdrawal(BalanceMutator(db).reject_withdrawal(request_id))


@app.get("/games")
async def list_games():
    return [game.describe() for game in GAMES.values()]


@app.post("/games/{game_key}/stake", response_model=StakeResponse)
async def place_stake(
    game_key: str,
    request: StakeRequest,
    _auth=Depends(require_service_token),
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(None),
):
    body = request.model_dump()
    existing, body_hash = _idempotent(db, idempotency_key, f"stake:{game_key}", body)
    if existing:
        return existing
    settlement = GameSettlement(db, director=director, clock=round_clock).place_stake(
        request.playerId, game_key, request.amountCents, request.selection
    )
    response = serialize_settlement(settlement)
    if idempotency_key:
        store_idempotency(db, idempotency_key, body_hash, response)
    return response


@app.get("/crash/round", response_model=RoundStateResponse)
async def crash_round():
    """
    Round state computed from the server clock.
    """
    return serialize_round_state(round_clock.current_state())


@app.get("/crash/history")
async def crash_history(count: int = Query(20, ge=1, le=100)):
    return [serialize_round_slot(slot) for slot in round_clock.recent_rounds(count)]


@app.get("/reconciliation_data")
async def download_reconciliation_csv(_auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    csv_text, mismatch_count = generate_reconciliation_csv(db)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="reconciliation.csv"',
            "X-Mismatch-Count": str(mismatch_count),
        },
    )


@app.get("/admin/withdrawals/orphaned")
async def orphaned_withdrawals(_auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    return [serialize_withdrawal(r) for r in BalanceMutator(db).orphaned_withdrawals()]


@app.get("/admin/log-failures")
async def log_failures(_auth=Depends(require_admin_token)):
    return [
        {"playerId": f.user_id, "entryType": f.entry_type, "detail": f.message}
        for f in recent_failures()
    ]


@app.get("/swagger", include_in_schema=False)
async def swagger_ui():
    return get_swagger_ui_html(openapi_url=str(app.openapi_url), title="Ledger & Outcome Engine - Swagger UI")


@app.get("/health")
async def health():
    return {"status": "ok"}
