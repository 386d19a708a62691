from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr
from typing import Optional, Any, Union

from app.config import BalanceCategory, EntryType


class OpenWalletRequest(BaseModel):
    playerId: str
    currency: Optional[str] = None
    referrerId: Optional[str] = None

class WalletResponse(BaseModel):
    playerId: str
    currency: str
    categories: dict[str, int]
    balanceCents: int
    withdrawableCents: int
    referrerId: Optional[str] = None

class AdjustRequest(BaseModel):
    category: BalanceCategory
    amountCents: int = Field(..., gt=0)
    entryType: EntryType = EntryType.ADJUSTMENT
    description: Optional[str] = None

class AdjustResponse(BaseModel):
    category: str
    direction: str
    requestedCents: int
    appliedCents: int
    wallet: WalletResponse

class WithdrawRequest(BaseModel):
    amountCents: int = Field(..., gt=0)
    destination: str

class WithdrawalResponse(BaseModel):
    id: int
    playerId: str
    amountCents: int
    destination: str
    status: str
    createdAt: Optional[str] = None
    processedAt: Optional[str] = None

class DailyBonusRequest(BaseModel):
    day: int = Field(..., ge=1)

# Game selections hold scalars, or a list of column indexes for apple_fortune picks.
SelectionValue = Union[StrictInt, StrictFloat, StrictStr, list[StrictInt], None]

class StakeRequest(BaseModel):
    playerId: str
    amountCents: int = Field(..., gt=0)
    selection: dict[str, SelectionValue] = Field(default_factory=dict)

class StakeResponse(BaseModel):
    game: str
    decision: str
    chance: float
    tier: Optional[str] = None
    stakeCents: int
    collectedCents: int
    charged: list[dict[str, Any]]
    payoutCents: int
    feeCents: int = 0
    profitCents: int
    presentation: dict[str, Any]
    roundId: Optional[int] = None
    revealAtMs: Optional[int] = None
    recordId: Optional[int] = None

class RoundStateResponse(BaseModel):
    roundId: int
    phase: str
    elapsedMs: int
    startedAtMs: int
    bettingEndsAtMs: int
    endsAtMs: int
    multiplier: float
    crashMultiplier: Optional[float] = None
