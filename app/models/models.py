from sqlalchemy import JSON, BigInteger, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    id = Column(Integer, primary_key=True)
    key = Column(String, unique=True, index=True, nullable=False)
    request_hash = Column(String, nullable=False)
    response_body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Wallet(Base):
    __tablename__ = "wallets"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    currency = Column(String, nullable=False)
    main_balance_cents = Column(Integer, nullable=False, default=0)
    deposit_balance_cents = Column(Integer, nullable=False, default=0)
    game_balance_cents = Column(Integer, nullable=False, default=0)
    earning_balance_cents = Column(Integer, nullable=False, default=0)
    investment_balance_cents = Column(Integer, nullable=False, default=0)
    referral_balance_cents = Column(Integer, nullable=False, default=0)
    commission_balance_cents = Column(Integer, nullable=False, default=0)
    bonus_balance_cents = Column(Integer, nullable=False, default=0)
    balance_cents = Column(Integer, nullable=False, default=0)  # sum of the eight categories
    withdrawable_cents = Column(Integer, nullable=False, default=0)  # mirrors main
    referrer_user_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    category = Column(String, nullable=True)
    direction = Column(String, nullable=True)  # debit|credit
    status = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    destination = Column(String, nullable=False)
    status = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)


class GameRecord(Base):
    __tablename__ = "game_history"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    game = Column(String, nullable=False)
    round_id = Column(BigInteger, nullable=True)
    stake_cents = Column(Integer, nullable=False)
    payout_cents = Column(Integer, nullable=False)
    profit_cents = Column(Integer, nullable=False)
    decision = Column(String, nullable=False)
    chance = Column(Float, nullable=False)
    details = Column(JSON, nullable=True)
    reveal_at_ms = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
