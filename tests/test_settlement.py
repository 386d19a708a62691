import random

import pytest

WINDOW_START = 600_000 * 2_833_333


class FixedRandom(random.Random):
    """Random whose `random()` always returns the same value."""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def settlement_for(session, value):
    from app.outcome import OutcomeDirector
    from app.settlement import GameSettlement

    return GameSettlement(session, director=OutcomeDirector(rng=FixedRandom(value)), rng=random.Random(7))


def winning(session):
    return settlement_for(session, 0.0)


def losing(session):
    return settlement_for(session, 0.999999)


def test_coin_flip_win_credits_game_category(session, fund):
    from app.ledger import WalletLedger
    from app.models import models
    from app.outcome import Decision

    fund("p1", game=10_000)
    result = winning(session).place_stake("p1", "coin_flip", 1_000, {"side": "head"})

    assert result.decision == Decision.WIN
    assert result.fee_cents == 45
    assert result.payout_cents == 1_855
    assert result.profit_cents == 855
    assert result.presentation == {"landed": "head"}
    wallet = WalletLedger(session).get_wallet("p1")
    session.refresh(wallet)
    assert wallet.game_balance_cents == 10_855
    assert wallet.balance_cents == 10_855
    record = session.get(models.GameRecord, result.record_id)
    assert record.profit_cents == 855
    assert record.details["feeCents"] == 45
    assert record.decision == "win"
    fee = session.query(models.LedgerEntry).filter_by(user_id="p1", type="fee").one()
    assert fee.amount_cents == 45
    assert fee.category is None
    assert WalletLedger(session).lifetime_net_profit("p1") == 855


def test_coin_flip_loss_lands_on_other_side(session, fund):
    from app.ledger import WalletLedger
    from app.models import models
    from app.outcome import Decision

    fund("p1", game=10_000)
    result = losing(session).place_stake("p1", "coin_flip", 1_000, {"side": "head"})

    assert result.decision == Decision.LOSS
    assert result.payout_cents == 0
    assert result.presentation == {"landed": "tail"}
    wallet = WalletLedger(session).get_wallet("p1")
    session.refresh(wallet)
    assert wallet.game_balance_cents == 9_000
    loss = session.query(models.LedgerEntry).filter_by(user_id="p1", type="loss").one()
    assert loss.amount_cents == 1_000
    assert loss.category is None
    assert WalletLedger(session).lifetime_net_profit("p1") == -1_000


def test_dice_presentation_agrees_with_decision(session, fund):
    from app.games import Dice
    from app.outcome import Decision, OutcomeDirector
    from app.settlement import GameSettlement

    fund("p1", game=100_000)
    for seed in range(30):
        settlement = GameSettlement(
            session, director=OutcomeDirector(rng=random.Random(seed)), rng=random.Random(seed)
        )
        result = settlement.place_stake("p1", "dice", 100, {"bet": "seven"})
        dice = result.presentation["dice"]
        assert sum(dice) == result.presentation["total"]
        assert Dice._hits("seven", result.presentation["total"]) == (result.decision == Decision.WIN)


@pytest.mark.parametrize(
    "game_key,selection",
    [
        ("thimbles", {"balls": 1, "cup": 2}),
        ("thimbles", {"balls": 2, "cup": 0}),
        ("apple_fortune", {"steps": 5}),
        ("apple_fortune", {"steps": 3, "picks": [0, 4, 2]}),
        ("dragon_spin", {"sector": "x7"}),
        ("dice", {"bet": "low"}),
    ],
)
def test_presentations_never_contradict_decision(game_key, selection):
    from app.games import get_game
    from app.outcome import Decision

    game = get_game(game_key)
    selection = game.validate(selection)
    rng = random.Random(3)
    for _ in range(50):
        for decision in (Decision.WIN, Decision.LOSS):
            shown = game.present(decision, selection, rng)
            won = decision == Decision.WIN
            if game_key == "thimbles":
                assert (selection["cup"] in shown["ballCups"]) == won
                assert len(shown["ballCups"]) == selection["balls"]
            elif game_key == "apple_fortune":
                rows = shown["rows"]
                hit = [row["pick"] in row["bad"] for row in rows]
                if won:
                    assert shown["failedRow"] is None
                    assert len(rows) == selection["steps"] and not any(hit)
                else:
                    assert hit[-1] and not any(hit[:-1])
                    assert shown["failedRow"] == len(rows) - 1
                for row in rows:
                    assert len(row["bad"]) == game.bad_count(row["row"])
            elif game_key == "dragon_spin":
                assert (shown["sector"] == selection["sector"]) == won
                assert game.WHEEL[shown["slot"]] == shown["sector"]
            else:
                assert (shown["total"] < 7) == won


def test_base_chances():
    from app.games import get_game

    assert get_game("coin_flip").base_chance({"side": "head"}) == 0.5
    assert get_game("dice").base_chance({"bet": "seven"}) == pytest.approx(6 / 36)
    assert get_game("dice").base_chance({"bet": "high"}) == pytest.approx(15 / 36)
    assert get_game("thimbles").base_chance({"balls": 2, "cup": 0}) == pytest.approx(2 / 3)
    assert get_game("dragon_spin").base_chance({"sector": "x20"}) == pytest.approx(1 / 18)
    assert get_game("crash").base_chance({"cashout": 0.5}) == 1.0
    assert get_game("crash").base_chance({"cashout": 1.94}) == pytest.approx(0.5)


def test_invalid_selection_rejected_before_deduction(session, fund):
    from app.errors import InvalidSelection
    from app.ledger import WalletLedger

    fund("p1", game=10_000)
    with pytest.raises(InvalidSelection):
        winning(session).place_stake("p1", "coin_flip", 1_000, {"side": "edge"})
    assert WalletLedger(session).get_aggregate("p1") == 10_000


def test_stake_limits(session, fund):
    from app.errors import InvalidStake

    fund("p1", game=10_000)
    with pytest.raises(InvalidStake):
        winning(session).place_stake("p1", "coin_flip", 50, {"side": "head"})


def test_unknown_game(session, fund):
    from app.errors import UnknownGame

    fund("p1", game=10_000)
    with pytest.raises(UnknownGame):
        winning(session).place_stake("p1", "roulette", 1_000, {})


def test_stake_above_aggregate_records_nothing(session, fund):
    from app.errors import InsufficientFunds
    from app.models import models

    fund("p1", game=500)
    with pytest.raises(InsufficientFunds):
        winning(session).place_stake("p1", "coin_flip", 1_000, {"side": "head"})
    assert session.query(models.GameRecord).count() == 0


def test_wealthy_player_gets_top_tier_chance(session, fund):
    fund("p1", main=700_000)
    result = losing(session).place_stake("p1", "coin_flip", 1_000, {"side": "tail"})
    assert result.tier == "aggregate_over_5000"
    assert result.chance == pytest.approx(0.02)
    assert result.charged == [(result.charged[0][0], 1_000)]
    assert result.charged[0][0].value == "main"


def test_crash_win_reveals_at_cashout_time(session, fund):
    from app.round_clock import slot_at

    fund("p1", game=10_000)
    now_ms = WINDOW_START + 1_000
    slot = slot_at(now_ms)
    result = winning(session).place_stake("p1", "crash", 1_000, {"cashout": 2}, now_ms=now_ms)

    assert result.round_id == slot.round_id
    assert result.payout_cents == 1_950
    assert result.presentation == {"cashout": 2.0, "cashedOut": True}
    assert result.reveal_at_ms == int(round(slot.reveal_at_ms(2.0)))


def test_crash_loss_reveals_at_crash_time(session, fund):
    from app.round_clock import slot_at

    fund("p1", game=10_000)
    now_ms = WINDOW_START + 1_000
    slot = slot_at(now_ms)
    result = losing(session).place_stake("p1", "crash", 1_000, {"cashout": 3.5}, now_ms=now_ms)

    assert result.payout_cents == 0
    assert result.reveal_at_ms == int(round(slot.crashes_at_ms))


def test_crash_stake_after_betting_phase_rejected(session, fund):
    from app.errors import BettingClosed
    from app.ledger import WalletLedger
    from app.round_clock import slot_at

    fund("p1", game=10_000)
    slot = slot_at(WINDOW_START)
    with pytest.raises(BettingClosed):
        winning(session).place_stake(
            "p1", "crash", 1_000, {"cashout": 2}, now_ms=int(slot.betting_ends_at_ms)
        )
    assert WalletLedger(session).get_aggregate("p1") == 10_000


def test_crash_cashout_bounds(session, fund):
    from app.errors import InvalidSelection

    fund("p1", game=10_000)
    for cashout in (1.0, 1000.5, "abc", None):
        with pytest.raises(InvalidSelection):
            winning(session).place_stake("p1", "crash", 1_000, {"cashout": cashout}, now_ms=WINDOW_START)


def test_win_pays_referrer_commission(session, fund):
    from app.ledger import WalletLedger
    from app.models import models

    fund("referrer")
    fund("friend", referrer_user_id="referrer", game=10_000)
    result = winning(session).place_stake("friend", "coin_flip", 1_000, {"side": "head"})

    assert result.commission_cents == 42
    referrer = WalletLedger(session).get_wallet("referrer")
    session.refresh(referrer)
    assert referrer.commission_balance_cents == 42
    entry = session.query(models.LedgerEntry).filter_by(user_id="referrer", type="referral").one()
    assert entry.amount_cents == 42


def test_loss_pays_no_commission(session, fund):
    fund("referrer")
    fund("friend", referrer_user_id="referrer", game=10_000)
    result = losing(session).place_stake("friend", "coin_flip", 1_000, {"side": "head"})
    assert result.commission_cents is None


def test_payout_rounds_down_to_whole_cents():
    from app.settlement import payout_cents

    assert payout_cents(333, 1.45) == 482
    assert payout_cents(1_000, 349.68) == 349_680


@pytest.mark.parametrize(
    "game_key,selection",
    [
        ("apple_fortune", {"steps": 2.0}),
        ("apple_fortune", {"steps": 2, "picks": [0.0, 1]}),
        ("thimbles", {"balls": 1.0, "cup": 0}),
        ("thimbles", {"balls": True, "cup": 0}),
        ("dice", {"bet": ["low"]}),
        ("dragon_spin", {"sector": {"x2": 1}}),
        ("crash", {"cashout": "2"}),
        ("crash", {"cashout": True}),
    ],
)
def test_malformed_selection_takes_nothing(session, fund, game_key, selection):
    from app.errors import InvalidSelection
    from app.ledger import WalletLedger
    from app.models import models

    fund("p1", game=10_000)
    with pytest.raises(InvalidSelection):
        winning(session).place_stake("p1", game_key, 1_000, selection, now_ms=WINDOW_START)

    assert WalletLedger(session).get_aggregate("p1") == 10_000
    assert session.query(models.GameRecord).count() == 0
    assert session.query(models.LedgerEntry).filter_by(user_id="p1", type="stake").count() == 0


def test_selection_must_be_an_object(session, fund):
    from app.errors import InvalidSelection

    fund("p1", game=10_000)
    with pytest.raises(InvalidSelection):
        winning(session).place_stake("p1", "dice", 1_000, ["low"])


def test_under_collected_stake_pays_on_amount_collected(session, fund):
    from app.ledger import WalletLedger
    from app.models import models
    from app.reconciliation import find_drift

    fund("p1", game=300, bonus=400, main=200)
    ledger = WalletLedger(session)
    before = ledger.get_aggregate("p1")
    result = winning(session).place_stake("p1", "coin_flip", 600, {"side": "head"})

    assert result.stake_cents == 600
    assert result.collected_cents == 400
    assert result.fee_cents == 18
    assert result.payout_cents == 742
    after = ledger.get_aggregate("p1")
    assert after - before == result.profit_cents == 342
    record = session.get(models.GameRecord, result.record_id)
    assert record.stake_cents == 400
    assert record.profit_cents == after - before
    assert ledger.lifetime_net_profit("p1") == after - before
    fee = session.query(models.LedgerEntry).filter_by(user_id="p1", type="fee").one()
    assert fee.amount_cents == 18
    assert find_drift(session) == []


def test_loss_charges_no_fee(session, fund):
    from app.models import models

    fund("p1", game=10_000)
    result = losing(session).place_stake("p1", "coin_flip", 1_000, {"side": "head"})
    assert result.fee_cents == 0
    assert session.query(models.LedgerEntry).filter_by(user_id="p1", type="fee").count() == 0


def test_profit_fee_rounds_down():
    from app.settlement import profit_fee_cents

    assert profit_fee_cents(333, 5) == 16
    assert profit_fee_cents(900) == 45
    assert profit_fee_cents(0) == 0
    assert profit_fee_cents(-500) == 0
    assert profit_fee_cents(900, 0) == 0


def test_concurrent_stakes_settle_once(app_module, fund):
    import threading

    from app.errors import InsufficientFunds
    from app.ledger import WalletLedger, category_values
    from app.outcome import OutcomeDirector
    from app.settlement import GameSettlement

    _, database, models = app_module
    fund("p1", game=1_000)
    barrier = threading.Barrier(8)
    outcomes = []

    def stake():
        db = database.SessionLocal()
        try:
            settlement = GameSettlement(db, director=OutcomeDirector(rng=FixedRandom(0.999999)))
            barrier.wait()
            settlement.place_stake("p1", "coin_flip", 1_000, {"side": "head"})
            outcomes.append("settled")
        except InsufficientFunds:
            outcomes.append("insufficient")
        finally:
            db.close()

    threads = [threading.Thread(target=stake) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["insufficient"] * 7 + ["settled"]
    with database.SessionLocal() as db:
        wallet = WalletLedger(db).get_wallet("p1")
        assert all(value >= 0 for value in category_values(wallet).values())
        assert wallet.balance_cents == 0
        assert db.query(models.GameRecord).count() == 1
