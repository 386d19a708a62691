import random
from importlib import reload
from datetime import datetime, timedelta, timezone

import pytest


def test_clean_ledger_has_no_drift(session, fund):
    from app.config import DebitPolicy
    from app.mutator import BalanceMutator
    from app.outcome import OutcomeDirector
    from app.reconciliation import find_drift
    from app.settlement import GameSettlement

    fund("p1", game=300, bonus=400, main=50_000)
    fund("p2", referrer_user_id="p1", game=20_000)
    BalanceMutator(session, policy=DebitPolicy.CLAMP).deduct_for_stake("p1", 600)
    settlement = GameSettlement(session, director=OutcomeDirector(rng=random.Random(5)), rng=random.Random(5))
    for _ in range(10):
        settlement.place_stake("p2", "coin_flip", 500, {"side": "head"})
    request = BalanceMutator(session).withdraw("p1", 2_000, "bank")
    BalanceMutator(session).reject_withdrawal(request.id)

    assert find_drift(session) == []


def test_injected_drift_is_reported(session, fund):
    from app.ledger import WalletLedger
    from app.reconciliation import find_drift, generate_reconciliation_csv

    fund("p1", game=1_000)
    fund("p2", main=2_000)
    wallet = WalletLedger(session).get_wallet("p1")
    wallet.game_balance_cents += 100
    session.commit()

    drifts = find_drift(session)
    assert {(d.user_id, d.field) for d in drifts} == {("p1", "game"), ("p1", "aggregate")}
    game_drift = next(d for d in drifts if d.field == "game")
    assert game_drift.ledger_cents == 1_000
    assert game_drift.wallet_cents == 1_100
    assert game_drift.drift_cents == 100
    assert find_drift(session, user_id="p2") == []

    csv_text, count = generate_reconciliation_csv(session)
    assert count == 2
    lines = csv_text.strip().splitlines()
    assert lines[0] == "userId,field,ledgerCents,walletCents,driftCents"
    assert "p1,game,1000,1100,100" in lines


def test_reconcile_aggregate_repairs_derived_fields(session, fund):
    from app.ledger import WalletLedger
    from app.reconciliation import find_drift

    fund("p1", main=1_000)
    wallet = WalletLedger(session).get_wallet("p1")
    wallet.balance_cents = 1
    wallet.withdrawable_cents = 2
    session.commit()
    assert {d.field for d in find_drift(session)} == {"aggregate", "withdrawable"}

    repaired = WalletLedger(session).reconcile_aggregate("p1")
    assert repaired.balance_cents == 1_000
    assert repaired.withdrawable_cents == 1_000
    assert find_drift(session) == []


def test_replay_wallet_matches_live_categories(session, fund):
    from app.config import BalanceCategory
    from app.ledger import WalletLedger, category_values
    from app.reconciliation import replay_wallet

    fund("p1", game=1_500, deposit=700)
    replayed = replay_wallet(session, "p1")
    wallet = WalletLedger(session).get_wallet("p1")
    assert replayed == category_values(wallet)
    assert replayed[BalanceCategory.GAME] == 1_500


def test_reconcile_command_writes_report(app_module, session, fund, tmp_path):
    import app.commands.reconcile as command

    reload(command)
    fund("p1", main=1_000)
    output = tmp_path / "reconciliation.csv"
    assert command.reconcile(str(output)) == 0
    assert output.read_text().startswith("userId,field")

    from app.ledger import WalletLedger

    wallet = WalletLedger(session).get_wallet("p1")
    wallet.main_balance_cents = 5
    session.commit()
    assert command.reconcile(str(output)) == 1


def test_daily_bonus_once_per_day(session, fund):
    from app.errors import BonusAlreadyClaimed
    from app.ledger import WalletLedger
    from app.rewards import claim_daily_bonus

    fund("p1")
    assert claim_daily_bonus(session, "p1", 3) == 30
    wallet = WalletLedger(session).get_wallet("p1")
    session.refresh(wallet)
    assert wallet.bonus_balance_cents == 30
    with pytest.raises(BonusAlreadyClaimed):
        claim_daily_bonus(session, "p1", 4)


def test_daily_bonus_allowed_after_previous_day(session, fund):
    from app.models import models
    from app.rewards import claim_daily_bonus

    fund("p1")
    claim_daily_bonus(session, "p1", 1)
    entry = session.query(models.LedgerEntry).filter(models.LedgerEntry.description.like("Daily Login Bonus%")).one()
    entry.created_at = datetime.now(timezone.utc) - timedelta(days=1)
    session.commit()
    assert claim_daily_bonus(session, "p1", 2) == 20


def test_daily_bonus_day_out_of_range(session, fund):
    from app.errors import InvalidAmount, WalletNotFound
    from app.rewards import claim_daily_bonus

    fund("p1")
    with pytest.raises(InvalidAmount):
        claim_daily_bonus(session, "p1", 8)
    with pytest.raises(WalletNotFound):
        claim_daily_bonus(session, "ghost", 1)
