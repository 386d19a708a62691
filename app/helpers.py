import hashlib
import json

from app.config import BalanceCategory
from app.models import models
from app.round_clock import RoundPhase, RoundSlot, RoundState
from app.settlement import Settlement


def hash_request(body: dict) -> str:
    return hashlib.sha256(json.dumps(body, sort_keys=True).encode()).hexdigest()


def serialize_wallet(wallet: models.Wallet) -> dict:
    return {
        "playerId": wallet.user_id,
        "currency": wallet.currency,
        "categories": {category.value: getattr(wallet, category.column) for category in BalanceCategory},
        "balanceCents": wallet.balance_cents,
        "withdrawableCents": wallet.withdrawable_cents,
        "referrerId": wallet.referrer_user_id,
    }


def serialize_entry(entry: models.LedgerEntry) -> dict:
    return {
        "id": entry.id,
        "type": entry.type,
        "amountCents": entry.amount_cents,
        "category": entry.category,
        "direction": entry.direction,
        "status": entry.status,
        "description": entry.description,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }


def serialize_withdrawal(request: models.WithdrawalRequest) -> dict:
    return {
        "id": request.id,
        "playerId": request.user_id,
        "amountCents": request.amount_cents,
        "destination": request.destination,
        "status": request.status,
        "createdAt": request.created_at.isoformat() if request.created_at else None,
        "processedAt": request.processed_at.isoformat() if request.processed_at else None,
    }


def serialize_settlement(settlement: Settlement) -> dict:
    return {
        "game": settlement.game,
        "decision": settlement.decision.value,
        "chance": settlement.chance,
        "tier": settlement.tier,
        "stakeCents": settlement.stake_cents,
        "collectedCents": settlement.collected_cents,
        "charged": [{"category": category.value, "amountCents": cents} for category, cents in settlement.charged],
        "payoutCents": settlement.payout_cents,
        "feeCents": settlement.fee_cents,
        "profitCents": settlement.profit_cents,
        "presentation": settlement.presentation,
        "roundId": settlement.round_id,
        "revealAtMs": settlement.reveal_at_ms,
        "recordId": settlement.record_id,
    }


def serialize_round_state(state: RoundState) -> dict:
    return {
        "roundId": state.round_id,
        "phase": state.phase.value,
        "elapsedMs": int(state.elapsed_ms),
        "startedAtMs": int(state.started_at_ms),
        "bettingEndsAtMs": int(state.betting_ends_at_ms),
        "endsAtMs": int(state.ends_at_ms),
        "multiplier": state.multiplier,
        # the crash point is only public once the round has crashed
        "crashMultiplier": state.crash_multiplier if state.phase == RoundPhase.CRASHED else None,
    }


def serialize_round_slot(slot: RoundSlot) -> dict:
    return {
        "roundId": slot.round_id,
        "startedAtMs": int(slot.start_ms),
        "crashMultiplier": slot.crash_multiplier,
    }
