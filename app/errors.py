"""Domain errors raised by the ledger, mutator and settlement layers.

Each error carries the HTTP status the API boundary maps it to, so library
callers and the FastAPI handlers share one taxonomy.
"""
from typing import Optional


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": type(self).__name__}


class WalletNotFound(LedgerError):
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__(f"wallet not found for user {user_id}")
        self.user_id = user_id


class WalletAlreadyExists(LedgerError):
    status_code = 409

    def __init__(self, user_id: str):
        super().__init__(f"wallet already exists for user {user_id}")
        self.user_id = user_id


class InsufficientFunds(LedgerError):
    status_code = 402

    def __init__(self, user_id: str, requested_cents: int, aggregate_cents: int):
        super().__init__(
            f"insufficient funds: requested {requested_cents} cents, available {aggregate_cents} cents"
        )
        self.user_id = user_id
        self.requested_cents = requested_cents
        self.aggregate_cents = aggregate_cents

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["aggregateCents"] = self.aggregate_cents
        return body


class InvalidAmount(LedgerError):
    status_code = 422


class UnsupportedCurrency(LedgerError):
    status_code = 422


class LogWriteFailure(LedgerError):
    status_code = 500

    def __init__(self, user_id: str, entry_type: str, cause: Exception):
        super().__init__(f"failed to append {entry_type} entry for user {user_id}: {cause}")
        self.user_id = user_id
        self.entry_type = entry_type


class WithdrawalSagaFailure(LedgerError):
    status_code = 500

    def __init__(self, user_id: str, request_id: Optional[int]):
        super().__init__("withdrawal could not be completed")
        self.user_id = user_id
        self.request_id = request_id


class WithdrawalNotFound(LedgerError):
    status_code = 404


class WithdrawalNotPending(LedgerError):
    status_code = 409


class BonusAlreadyClaimed(LedgerError):
    status_code = 409


class UnknownGame(LedgerError):
    status_code = 404


class InvalidStake(LedgerError):
    status_code = 422


class InvalidSelection(LedgerError):
    status_code = 422


class BettingClosed(LedgerError):
    status_code = 409


class IdempotencyConflict(LedgerError):
    status_code = 409
