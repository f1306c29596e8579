"""Credit ledger records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class TransactionKind(str, Enum):
    """Accounting kind of a ledger entry.

    The balance effect of each kind is fixed: RESERVE debits, REFUND and
    TOPUP credit, CHARGE finalises an earlier RESERVE without moving the
    balance.
    """

    RESERVE = "RESERVE"
    CHARGE = "CHARGE"
    REFUND = "REFUND"
    TOPUP = "TOPUP"


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"
    CHARGED = "CHARGED"
    REFUNDED = "REFUNDED"


class CreditAccount(BaseModel):
    account_id: str = Field(..., min_length=1)
    balance: int = Field(..., ge=0, description="Cached projection of the transaction log.")
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreditTransaction(BaseModel):
    """One append-only ledger entry."""

    id: int
    account_id: str
    kind: TransactionKind
    amount: int = Field(..., ge=0, description="Face value of the entry.")
    amount_signed: int = Field(..., description="Effect on the account balance.")
    balance_after: int = Field(..., ge=0)
    related_job_id: str | None = None
    reference: str | None = None
    created_at: datetime


class Reservation(BaseModel):
    """Credit held for one report job until it is charged or refunded."""

    job_id: str
    account_id: str
    amount: int = Field(..., ge=0)
    status: ReservationStatus = ReservationStatus.RESERVED
    created_at: datetime | None = None
    settled_at: datetime | None = None


class LedgerAudit(BaseModel):
    """Comparison of the cached balance against the transaction log."""

    account_id: str
    balance: int
    ledger_sum: int
    transaction_count: int
    open_reservations: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum
