"""Game catalogue.

A game never decides its own result. It declares the base chance and win
multiplier for a selection, and once the outcome director has decided it
builds a presentation consistent with that decision (the landed coin side,
the dice, the cups hiding the ball, ...).
"""
import random
from typing import Dict, List, Optional

from app.config import settings
from app.errors import InvalidSelection, UnknownGame
from app.outcome import Decision
from app.round_clock import HOUSE_FACTOR, MAX_MULTIPLIER


class Game:
    key = ""
    name = ""
    timed = False

    def __init__(self, min_stake_cents: Optional[int] = None, max_stake_cents: Optional[int] = None):
        self.min_stake_cents = min_stake_cents if min_stake_cents is not None else settings.min_stake_cents
        self.max_stake_cents = max_stake_cents if max_stake_cents is not None else settings.max_stake_cents

    def validate(self, selection: dict) -> dict:
        raise NotImplementedError

    def base_chance(self, selection: dict) -> float:
        raise NotImplementedError

    def multiplier(self, selection: dict) -> float:
        raise NotImplementedError

    def present(self, decision: Decision, selection: dict, rng: random.Random) -> dict:
        raise NotImplementedError

    def describe(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "timed": self.timed,
            "minStakeCents": self.min_stake_cents,
            "maxStakeCents": self.max_stake_cents,
        }


def _choice(selection: dict, field: str, options) -> object:
    # exact type match: 2.0 == 2 and True == 1 must not pass as ints
    value = selection.get(field)
    if not any(type(value) is type(option) and value == option for option in options):
        raise InvalidSelection(f"{field} must be one of {sorted(options)}")
    return value


class CoinFlip(Game):
    key = "coin_flip"
    name = "Head & Tail"
    SIDES = ("head", "tail")
    MULTIPLIER = 1.90

    def validate(self, selection):
        return {"side": _choice(selection, "side", self.SIDES)}

    def base_chance(self, selection):
        return 0.5

    def multiplier(self, selection):
        return self.MULTIPLIER

    def present(self, decision, selection, rng):
        side = selection["side"]
        if decision == Decision.LOSS:
            side = "tail" if side == "head" else "head"
        return {"landed": side}


class Dice(Game):
    key = "dice"
    name = "Dice"
    MULTIPLIERS = {"low": 2.3, "seven": 5.8, "high": 2.3}

    @staticmethod
    def _hits(bet: str, total: int) -> bool:
        if bet == "low":
            return total < 7
        if bet == "seven":
            return total == 7
        return total > 7

    def validate(self, selection):
        return {"bet": _choice(selection, "bet", self.MULTIPLIERS)}

    def base_chance(self, selection):
        rolls = [a + b for a in range(1, 7) for b in range(1, 7)]
        return sum(1 for total in rolls if self._hits(selection["bet"], total)) / len(rolls)

    def multiplier(self, selection):
        return self.MULTIPLIERS[selection["bet"]]

    def present(self, decision, selection, rng):
        wanted = decision == Decision.WIN
        rolls = [(a, b) for a in range(1, 7) for b in range(1, 7) if self._hits(selection["bet"], a + b) == wanted]
        first, second = rng.choice(rolls)
        return {"dice": [first, second], "total": first + second}


class Thimbles(Game):
    key = "thimbles"
    name = "Thimbles"
    CUPS = 3
    MULTIPLIERS = {1: 2.91, 2: 1.45}

    def validate(self, selection):
        balls = _choice(selection, "balls", self.MULTIPLIERS)
        cup = _choice(selection, "cup", range(self.CUPS))
        return {"balls": balls, "cup": cup}

    def base_chance(self, selection):
        return selection["balls"] / self.CUPS

    def multiplier(self, selection):
        return self.MULTIPLIERS[selection["balls"]]

    def present(self, decision, selection, rng):
        cup, balls = selection["cup"], selection["balls"]
        others = [c for c in range(self.CUPS) if c != cup]
        if decision == Decision.WIN:
            hidden = [cup] + rng.sample(others, balls - 1)
        else:
            hidden = rng.sample(others, balls)
        return {"ballCups": sorted(hidden)}


class AppleFortune(Game):
    """Ladder game: survive `steps` rows of apples, each row hiding bad ones."""

    key = "apple_fortune"
    name = "Apple of Fortune"
    COLS = 5
    LADDER = [1.23, 1.54, 1.93, 2.41, 4.02, 6.71, 11.18, 27.97, 69.93, 349.68]

    @staticmethod
    def bad_count(row: int) -> int:
        if row < 4:
            return 1
        if row < 7:
            return 2
        if row < 9:
            return 3
        return 4

    def validate(self, selection):
        steps = _choice(selection, "steps", range(1, len(self.LADDER) + 1))
        picks = selection.get("picks")
        if picks is None:
            return {"steps": steps, "picks": None}
        if (
            not isinstance(picks, list)
            or len(picks) != steps
            or any(type(p) is not int or not 0 <= p < self.COLS for p in picks)
        ):
            raise InvalidSelection(f"picks must list {steps} column indexes below {self.COLS}")
        return {"steps": steps, "picks": picks}

    def base_chance(self, selection):
        chance = 1.0
        for row in range(selection["steps"]):
            chance *= (self.COLS - self.bad_count(row)) / self.COLS
        return chance

    def multiplier(self, selection):
        return self.LADDER[selection["steps"] - 1]

    def present(self, decision, selection, rng):
        steps = selection["steps"]
        picks = selection["picks"] or [rng.randrange(self.COLS) for _ in range(steps)]
        failed_row = None if decision == Decision.WIN else rng.randrange(steps)
        rows: List[Dict] = []
        for row in range(steps if failed_row is None else failed_row + 1):
            pick = picks[row]
            count = self.bad_count(row)
            if row == failed_row:
                bad = [pick] + rng.sample([c for c in range(self.COLS) if c != pick], count - 1)
            else:
                bad = rng.sample([c for c in range(self.COLS) if c != pick], count)
            rows.append({"row": row, "pick": pick, "bad": sorted(bad)})
        return {"rows": rows, "failedRow": failed_row}


class DragonSpin(Game):
    key = "dragon_spin"
    name = "Dragon Spin"
    SECTORS = {"x2": 2, "x4": 4, "x5": 5, "x7": 7, "x10": 10, "x20": 20}
    WHEEL = ["x2", "x4", "x5", "x2", "x10", "x2", "x4", "x7", "x2", "x4", "x2", "x20", "x7", "x2", "x4", "x5", "x2", "x4"]

    def validate(self, selection):
        return {"sector": _choice(selection, "sector", self.SECTORS)}

    def base_chance(self, selection):
        return self.WHEEL.count(selection["sector"]) / len(self.WHEEL)

    def multiplier(self, selection):
        return self.SECTORS[selection["sector"]]

    def present(self, decision, selection, rng):
        wanted = decision == Decision.WIN
        slots = [i for i, sector in enumerate(self.WHEEL) if (sector == selection["sector"]) == wanted]
        slot = rng.choice(slots)
        return {"slot": slot, "sector": self.WHEEL[slot]}


class Crash(Game):
    """Timed multiplier game; the stake carries an automatic cash-out target."""

    key = "crash"
    name = "Crash"
    timed = True
    MIN_CASHOUT = 1.01

    def validate(self, selection):
        raw = selection.get("cashout")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise InvalidSelection("cashout must be a number")
        cashout = round(float(raw), 2)
        if not self.MIN_CASHOUT <= cashout <= MAX_MULTIPLIER:
            raise InvalidSelection(f"cashout must be between {self.MIN_CASHOUT} and {MAX_MULTIPLIER}")
        return {"cashout": cashout}

    def base_chance(self, selection):
        return min(1.0, HOUSE_FACTOR / selection["cashout"])

    def multiplier(self, selection):
        return selection["cashout"]

    def present(self, decision, selection, rng):
        return {"cashout": selection["cashout"], "cashedOut": decision == Decision.WIN}


GAMES: Dict[str, Game] = {}


def register(game: Game) -> Game:
    GAMES[game.key] = game
    return game


for _game in (CoinFlip(), Dice(), Thimbles(), AppleFortune(), DragonSpin(), Crash()):
    register(_game)


def get_game(key: str) -> Game:
    game = GAMES.get(key)
    if not game:
        raise UnknownGame(f"unknown game {key}")
    return game
