import random
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import BalanceCategory, EntryType, WalletAction, settings
from app.errors import BettingClosed, InsufficientFunds, InvalidSelection, InvalidStake
from app.games import get_game
from app.ledger import WalletLedger
from app.logging_config import get_logger
from app.models import models
from app.mutator import BalanceMutator, wallet_lock
from app.outcome import Decision, OutcomeDirector
from app.rewards import distribute_referral_commission
from app.round_clock import RoundClock, slot_at


logger = get_logger(__name__)


def payout_cents(stake_cents: int, multiplier: float) -> int:
    return int((Decimal(stake_cents) * Decimal(str(multiplier))).to_integral_value(rounding=ROUND_FLOOR))


def profit_fee_cents(profit_cents: int, percent: Optional[float] = None) -> int:
    """House fee on the profit of a winning game, rounded down to whole cents."""
    if profit_cents <= 0:
        return 0
    percent = settings.game_profit_fee_percent if percent is None else percent
    fee = Decimal(profit_cents) * Decimal(str(percent)) / 100
    return int(fee.to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class Settlement:
    game: str
    decision: Decision
    chance: float
    tier: Optional[str]
    stake_cents: int
    collected_cents: int
    charged: List[Tuple[BalanceCategory, int]]
    payout_cents: int
    presentation: dict
    fee_cents: int = 0
    round_id: Optional[int] = None
    reveal_at_ms: Optional[int] = None
    record_id: Optional[int] = None
    commission_cents: Optional[int] = None

    @property
    def profit_cents(self) -> int:
        return self.payout_cents - self.collected_cents


class GameSettlement:
    """
    Per-action orchestration shared by every game:
    validate -> deduct -> decide -> payout -> log -> record.

    Validation failures raise before anything is deducted, and a failed
    deduction surfaces untouched before any decision is made. Payout, fee and
    profit are computed on the amount actually collected, which is less than
    the requested stake when a clamped deduction under-collects.
    """

    def __init__(
        self,
        db: Session,
        director: Optional[OutcomeDirector] = None,
        clock: Optional[RoundClock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.ledger = WalletLedger(db)
        self.mutator = BalanceMutator(db)
        self.director = director or OutcomeDirector()
        self.clock = clock or RoundClock()
        self.rng = rng or random.SystemRandom()

    def place_stake(
        self,
        user_id: str,
        game_key: str,
        stake_cents: int,
        selection: Optional[dict] = None,
        now_ms: Optional[int] = None,
    ) -> Settlement:
        game = get_game(game_key)
        if selection is not None and not isinstance(selection, dict):
            raise InvalidSelection("selection must be an object")
        selection = game.validate(selection or {})
        base_chance = game.base_chance(selection)
        multiplier = game.multiplier(selection)
        if not game.min_stake_cents <= stake_cents <= game.max_stake_cents:
            raise InvalidStake(
                f"stake must be between {game.min_stake_cents} and {game.max_stake_cents} cents"
            )
        aggregate = self.ledger.get_aggregate(user_id)
        if aggregate < stake_cents:
            raise InsufficientFunds(user_id, stake_cents, aggregate)
        slot = None
        if game.timed:
            now_ms = now_ms if now_ms is not None else self.clock.now_ms()
            slot = slot_at(now_ms)
            if now_ms >= slot.betting_ends_at_ms:
                raise BettingClosed(f"round {slot.round_id} is no longer taking stakes")

        with wallet_lock(user_id):
            deduction = self.mutator.deduct_for_stake(user_id, stake_cents, description=f"{game.name} Stake")
            wagered = deduction.collected_cents
            standing = self.ledger.standing(user_id)
            assessment = self.director.assess(base_chance, wagered, standing)
            decision = self.director.decide(user_id, base_chance, wagered, standing, assessment)
            gross_payout = payout_cents(wagered, multiplier) if decision == Decision.WIN else 0
            fee = profit_fee_cents(gross_payout - wagered)
            payout = gross_payout - fee
            presentation = game.present(decision, selection, self.rng)

            if payout > 0:
                description = f"{game.name} Win x{multiplier:.2f}"
                if fee:
                    description += f" (Fee: -{fee})"
                adjustment = self.mutator.adjust(user_id, BalanceCategory.GAME, payout, WalletAction.CREDIT)
                self.mutator.record(user_id, adjustment, EntryType.PAYOUT, description)
            else:
                self.mutator.log.append(user_id, EntryType.LOSS, wagered, f"{game.name} Loss")
            if fee:
                # informational: the fee was never credited, so it carries no category
                self.mutator.log.append(user_id, EntryType.FEE, fee, f"{game.name} profit fee")

            reveal_at_ms = None
            if slot is not None:
                reveal_at = slot.reveal_at_ms(multiplier) if decision == Decision.WIN else slot.crashes_at_ms
                reveal_at_ms = int(round(reveal_at))

            record = models.GameRecord(
                user_id=user_id,
                game=game.key,
                round_id=slot.round_id if slot else None,
                stake_cents=wagered,
                payout_cents=payout,
                profit_cents=payout - wagered,
                decision=decision.value,
                chance=assessment.chance,
                details={
                    "selection": selection,
                    "presentation": presentation,
                    "requestedStakeCents": stake_cents,
                    "feeCents": fee,
                },
                reveal_at_ms=reveal_at_ms,
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)

        commission = distribute_referral_commission(self.db, user_id, payout - wagered)
        logger.info(
            "Settled stake user=%s game=%s stake_cents=%s collected_cents=%s decision=%s chance=%.4f "
            "payout_cents=%s fee_cents=%s record_id=%s",
            user_id,
            game.key,
            stake_cents,
            wagered,
            decision.value,
            assessment.chance,
            payout,
            fee,
            record.id,
        )
        return Settlement(
            game=game.key,
            decision=decision,
            chance=assessment.chance,
            tier=assessment.tier,
            stake_cents=stake_cents,
            collected_cents=wagered,
            charged=list(deduction.parts),
            payout_cents=payout,
            presentation=presentation,
            fee_cents=fee,
            round_id=slot.round_id if slot else None,
            reveal_at_ms=reveal_at_ms,
            record_id=record.id,
            commission_cents=commission,
        )
