"""Adaptive win probability.

The director decides win or loss for a stake before any game produces its
presentation. The chance is picked from the player's standing: the first tier
whose threshold is exceeded replaces the game's base chance, and large stakes
from well-funded players are halved on top of that.

Amounts are integer cents throughout.
"""
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.ledger import PlayerStanding
from app.logging_config import get_logger


logger = get_logger(__name__)


class Decision(str, Enum):
    WIN = "win"
    LOSS = "loss"


@dataclass(frozen=True)
class Tier:
    name: str
    basis: str  # "aggregate" or "profit"
    threshold_cents: int
    chance: float

    def matches(self, standing: PlayerStanding) -> bool:
        if self.basis == "aggregate":
            return standing.aggregate_cents > self.threshold_cents
        return standing.lifetime_net_profit_cents > self.threshold_cents


TIERS = (
    Tier("aggregate_over_5000", "aggregate", 500_000, 0.02),
    Tier("aggregate_over_3500", "aggregate", 350_000, 0.10),
    Tier("aggregate_over_3000", "aggregate", 300_000, 0.25),
    Tier("profit_over_2500", "profit", 250_000, 0.30),
)

HIGH_STAKE_CENTS = 50_000
HIGH_STAKE_AGGREGATE_CENTS = 300_000
HIGH_STAKE_FACTOR = 0.5


@dataclass(frozen=True)
class Assessment:
    base_chance: float
    tier: Optional[str]
    penalized: bool
    chance: float


def assess(base_chance: float, stake_cents: int, standing: PlayerStanding) -> Assessment:
    base_chance = min(1.0, max(0.0, float(base_chance)))
    tier = next((t for t in TIERS if t.matches(standing)), None)
    chance = tier.chance if tier else base_chance
    penalized = stake_cents > HIGH_STAKE_CENTS and standing.aggregate_cents > HIGH_STAKE_AGGREGATE_CENTS
    if penalized:
        chance *= HIGH_STAKE_FACTOR
    return Assessment(base_chance, tier.name if tier else None, penalized, chance)


class OutcomeDirector:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.SystemRandom()

    def assess(self, base_chance: float, stake_cents: int, standing: PlayerStanding) -> Assessment:
        return assess(base_chance, stake_cents, standing)

    def decide(
        self,
        user_id: str,
        base_chance: float,
        stake_cents: int,
        standing: PlayerStanding,
        assessment: Optional[Assessment] = None,
    ) -> Decision:
        assessment = assessment or self.assess(base_chance, stake_cents, standing)
        decision = Decision.WIN if self.rng.random() < assessment.chance else Decision.LOSS
        logger.debug(
            "Decided user=%s decision=%s chance=%.4f tier=%s penalized=%s",
            user_id,
            decision.value,
            assessment.chance,
            assessment.tier,
            assessment.penalized,
        )
        return decision
