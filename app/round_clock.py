"""Clock-derived round state for the crash game.

Every observer derives the same round id, crash multiplier and phase from
its own wall clock, with no server feed:

* rounds are chained end to end from a 10-minute window boundary, the first
  round of a window taking the id ``boundary_ms // 1000``;
* a round lasts betting + flight + post-crash pause, the flight length being
  a pure function of the round's crash multiplier;
* a round is only started if it fits before the next boundary. Otherwise the
  previous round's pause stretches up to the boundary, where a fresh chain
  begins. Any earlier boundary therefore replays into the same state.

Correctness rests on the observer's clock; a skewed clock sees a different
round. ``GET /crash/round`` exposes the server-clock view for deployments that
want a single authority.
"""
import hashlib
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

BETTING_MS = 6000
POST_CRASH_MS = 3000
GROWTH_COEF = 0.2302585
MAX_MULTIPLIER = 1000.00
INSTANT_CRASH_PROBABILITY = 0.03
HOUSE_FACTOR = 0.97
WINDOW_MS = 600_000


class RoundPhase(str, Enum):
    BETTING = "betting"
    FLYING = "flying"
    CRASHED = "crashed"


def floor2(value: float) -> float:
    return math.floor(value * 100) / 100


def unit_hash(round_id: int) -> float:
    digest = hashlib.sha256(f"crash-round:{round_id}".encode()).digest()
    return (int.from_bytes(digest[:8], "big") >> 11) / float(1 << 53)


def crash_multiplier(round_id: int) -> float:
    r = unit_hash(round_id)
    if r < INSTANT_CRASH_PROBABILITY:
        return 1.00
    multiplier = HOUSE_FACTOR / (1.0 - r)
    return floor2(min(MAX_MULTIPLIER, max(1.00, multiplier)))


def flight_duration_ms(multiplier: float) -> float:
    if multiplier <= 1.00:
        return 0.0
    return (math.log(multiplier) / GROWTH_COEF) * 1000


def multiplier_at(flight_elapsed_ms: float, crash: float) -> float:
    if flight_elapsed_ms <= 0:
        return 1.00
    return floor2(min(crash, math.exp(GROWTH_COEF * flight_elapsed_ms / 1000)))


def round_duration_ms(round_id: int) -> float:
    return BETTING_MS + flight_duration_ms(crash_multiplier(round_id)) + POST_CRASH_MS


def window_start(ms: float) -> int:
    return int(ms // WINDOW_MS) * WINDOW_MS


@dataclass(frozen=True)
class RoundSlot:
    round_id: int
    start_ms: float
    end_ms: float

    @property
    def crash_multiplier(self) -> float:
        return crash_multiplier(self.round_id)

    @property
    def flight_duration_ms(self) -> float:
        return flight_duration_ms(self.crash_multiplier)

    @property
    def betting_ends_at_ms(self) -> float:
        return self.start_ms + BETTING_MS

    @property
    def crashes_at_ms(self) -> float:
        return self.betting_ends_at_ms + self.flight_duration_ms

    def reveal_at_ms(self, multiplier: float) -> float:
        """Instant at which the curve of this round reaches `multiplier`."""
        return self.betting_ends_at_ms + flight_duration_ms(multiplier)


@dataclass(frozen=True)
class RoundState:
    round_id: int
    phase: RoundPhase
    elapsed_ms: float
    started_at_ms: float
    betting_ends_at_ms: float
    crashes_at_ms: float
    ends_at_ms: float
    crash_multiplier: float
    flight_duration_ms: float
    multiplier: float


def iter_rounds(anchor_ms: int) -> Iterator[RoundSlot]:
    """Yield consecutive rounds starting at a window boundary, forever."""
    if anchor_ms % WINDOW_MS:
        raise ValueError(f"anchor {anchor_ms} is not a {WINDOW_MS} ms window boundary")
    start: float = anchor_ms
    round_id = anchor_ms // 1000
    while True:
        boundary = window_start(start) + WINDOW_MS
        end = start + round_duration_ms(round_id)
        if end + round_duration_ms(round_id + 1) > boundary:
            end = boundary
        yield RoundSlot(round_id, start, end)
        if end == boundary:
            start, round_id = boundary, boundary // 1000
        else:
            start, round_id = end, round_id + 1


def slot_at(now_ms: float, anchor_ms: Optional[int] = None) -> RoundSlot:
    if anchor_ms is None:
        anchor_ms = window_start(now_ms)
    if anchor_ms > now_ms:
        raise ValueError("anchor lies in the future")
    for slot in iter_rounds(anchor_ms):
        if now_ms < slot.end_ms:
            return slot
    raise RuntimeError("unreachable")


def state_at(now_ms: float, anchor_ms: Optional[int] = None) -> RoundState:
    slot = slot_at(now_ms, anchor_ms)
    crash = slot.crash_multiplier
    flight = slot.flight_duration_ms
    offset = now_ms - slot.start_ms
    if offset < BETTING_MS:
        phase, elapsed, multiplier = RoundPhase.BETTING, offset, 1.00
    elif offset < BETTING_MS + flight:
        elapsed = offset - BETTING_MS
        phase, multiplier = RoundPhase.FLYING, multiplier_at(elapsed, crash)
    else:
        phase, elapsed, multiplier = RoundPhase.CRASHED, offset - BETTING_MS - flight, crash
    return RoundState(
        round_id=slot.round_id,
        phase=phase,
        elapsed_ms=elapsed,
        started_at_ms=slot.start_ms,
        betting_ends_at_ms=slot.betting_ends_at_ms,
        crashes_at_ms=slot.crashes_at_ms,
        ends_at_ms=slot.end_ms,
        crash_multiplier=crash,
        flight_duration_ms=flight,
        multiplier=multiplier,
    )


def recent_rounds(now_ms: float, count: int = 20) -> List[RoundSlot]:
    """Completed rounds before `now_ms`, newest first."""
    finished: List[RoundSlot] = []
    window = window_start(now_ms)
    while len(finished) < count and window >= 0:
        in_window = []
        for slot in iter_rounds(window):
            if slot.end_ms > now_ms or slot.start_ms >= window + WINDOW_MS:
                break
            in_window.append(slot)
        finished.extend(reversed(in_window))
        window -= WINDOW_MS
    return finished[:count]


class RoundClock:
    """Round state against an injectable wall clock (seconds, like time.time)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def current_state(self) -> RoundState:
        return state_at(self.now_ms())

    def current_slot(self) -> RoundSlot:
        return slot_at(self.now_ms())

    def state_at(self, now_ms: float, anchor_ms: Optional[int] = None) -> RoundState:
        return state_at(now_ms, anchor_ms)

    def recent_rounds(self, count: int = 20) -> List[RoundSlot]:
        return recent_rounds(self.now_ms(), count)
