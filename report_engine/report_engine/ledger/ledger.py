"""Credit ledger: per-account balances backed by an append-only transaction log.

Report jobs hold credit through a reservation that is later either charged
(finalised) or refunded.  The balance column is a cached projection of the
log; every operation updates both inside the caller's transaction so they
can never diverge.

Atomicity
---------
``reserve`` debits with a single conditional statement::

    UPDATE credit_accounts SET balance = balance - :amount
    WHERE account_id = :account AND balance >= :amount

which behaves as a compare-and-swap on the balance: two concurrent
reservations against a nearly empty account cannot both match.  ``charge``
and ``refund`` move the reservation out of ``RESERVED`` the same way, so a
second settlement of the same job finds no row to update and is rejected
from stored state rather than from anything the caller passes in.

Balance effect per transaction kind
-----------------------------------
============  =========  ===============
kind          amount     amount_signed
============  =========  ===============
RESERVE       n          -n
CHARGE        n          0
REFUND        n          +n
TOPUP         n          +n
============  =========  ===============
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.errors import InsufficientCreditError, LedgerConsistencyError, NotFoundError
from report_engine.models.ledger import (
    CreditAccount,
    CreditTransaction,
    LedgerAudit,
    Reservation,
    ReservationStatus,
    TransactionKind,
)
from report_engine.state.tables import CreditAccountTable, CreditReservationTable, CreditTransactionTable

logger = logging.getLogger(__name__)


def _reservation_from_row(row: CreditReservationTable) -> Reservation:
    return Reservation(
        job_id=row.job_id,
        account_id=row.account_id,
        amount=row.amount,
        status=ReservationStatus(row.status),
        created_at=row.created_at,
        settled_at=row.settled_at,
    )


def _transaction_from_row(row: CreditTransactionTable) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,
        account_id=row.account_id,
        kind=TransactionKind(row.kind),
        amount=row.amount,
        amount_signed=row.amount_signed,
        balance_after=row.balance_after,
        related_job_id=row.related_job_id,
        reference=row.reference,
        created_at=row.created_at,
    )


class CreditLedger:
    """Reserve, charge and refund credits for report jobs.

    Parameters
    ----------
    session:
        Active async session.  The ledger flushes but never commits so that
        a reservation can share a transaction with the job stage change it
        pays for.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # -- Accounts -----------------------------------------------------------

    async def open_account(self, account_id: str, initial_balance: int = 0) -> CreditAccount:
        """Create *account_id* if missing and optionally seed it with a top-up.

        Opening an existing account is a no-op apart from the seed top-up.
        """
        if initial_balance < 0:
            raise ValueError("initial_balance must be non-negative")
        existing = await self._get_account(account_id)
        if existing is None:
            now = datetime.now(UTC)
            self._session.add(CreditAccountTable(account_id=account_id, balance=0, created_at=now, updated_at=now))
            await self._session.flush()
            logger.info("Opened credit account %s", account_id)
        if initial_balance > 0:
            await self.top_up(account_id, initial_balance, reference="opening balance")
        return await self.get_account(account_id)

    async def get_account(self, account_id: str) -> CreditAccount:
        row = await self._get_account(account_id)
        if row is None:
            raise NotFoundError(f"Credit account {account_id!r} not found")
        return CreditAccount(
            account_id=row.account_id,
            balance=row.balance,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def balance(self, account_id: str) -> int:
        """Return the cached balance of *account_id*."""
        current = await self._current_balance(account_id)
        if current is None:
            raise NotFoundError(f"Credit account {account_id!r} not found")
        return current

    async def top_up(self, account_id: str, amount: int, reference: str | None = None) -> CreditTransaction:
        """Credit *amount* to an existing account (operator seeding, no payment flow)."""
        if amount <= 0:
            raise ValueError("Top-up amount must be positive")
        result = await self._session.execute(
            update(CreditAccountTable)
            .where(CreditAccountTable.account_id == account_id)
            .values(balance=CreditAccountTable.balance + amount, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
            raise NotFoundError(f"Credit account {account_id!r} not found")
        entry = await self._append(account_id, TransactionKind.TOPUP, amount, amount, None, reference)
        logger.info("Topped up account %s by %d (balance %d)", account_id, amount, entry.balance_after)
        return entry

    # -- Reservations -------------------------------------------------------

    async def reserve(self, account_id: str, amount: int, job_id: str) -> Reservation:
        """Hold *amount* credits of *account_id* for *job_id*.

        Raises
        ------
        InsufficientCreditError
            The balance is below *amount*.  Nothing is written.
        NotFoundError
            The account does not exist.
        LedgerConsistencyError
            A reservation for *job_id* already exists.
        """
        if amount < 0:
            raise ValueError("Reservation amount must be non-negative")

        result = await self._session.execute(
            update(CreditAccountTable)
            .where(CreditAccountTable.account_id == account_id, CreditAccountTable.balance >= amount)
            .values(balance=CreditAccountTable.balance - amount, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
            available = await self._current_balance(account_id)
            if available is None:
                raise NotFoundError(f"Credit account {account_id!r} not found")
            logger.info(
                "Reservation refused for job %s: account %s has %d, needs %d",
                job_id,
                account_id,
                available,
                amount,
            )
            raise InsufficientCreditError(account_id, required=amount, available=available, job_id=job_id)

        now = datetime.now(UTC)
        row = CreditReservationTable(
            job_id=job_id,
            account_id=account_id,
            amount=amount,
            status=ReservationStatus.RESERVED.value,
            created_at=now,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            logger.critical("Duplicate reservation attempted for job %s on account %s", job_id, account_id)
            raise LedgerConsistencyError(job_id, "reserve", ReservationStatus.RESERVED.value) from exc

        await self._append(account_id, TransactionKind.RESERVE, amount, -amount, job_id, None)
        logger.info("Reserved %d credit(s) on account %s for job %s", amount, account_id, job_id)
        return _reservation_from_row(row)

    async def charge(self, reservation: Reservation | str) -> Reservation:
        """Finalise a reservation.  The balance was already debited by ``reserve``."""
        job_id = reservation if isinstance(reservation, str) else reservation.job_id
        stored = await self._settle(job_id, ReservationStatus.CHARGED, "charge")
        await self._append(stored.account_id, TransactionKind.CHARGE, stored.amount, 0, job_id, None)
        logger.info("Charged %d credit(s) on account %s for job %s", stored.amount, stored.account_id, job_id)
        return stored

    async def refund(self, reservation: Reservation | str) -> Reservation:
        """Return an uncharged reservation to the account balance."""
        job_id = reservation if isinstance(reservation, str) else reservation.job_id
        stored = await self._settle(job_id, ReservationStatus.REFUNDED, "refund")
        await self._session.execute(
            update(CreditAccountTable)
            .where(CreditAccountTable.account_id == stored.account_id)
            .values(balance=CreditAccountTable.balance + stored.amount, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self._append(stored.account_id, TransactionKind.REFUND, stored.amount, stored.amount, job_id, None)
        logger.info("Refunded %d credit(s) to account %s for job %s", stored.amount, stored.account_id, job_id)
        return stored

    async def get_reservation(self, job_id: str) -> Reservation | None:
        row = await self._get_reservation(job_id)
        return _reservation_from_row(row) if row is not None else None

    # -- Audit --------------------------------------------------------------

    async def history(
        self,
        account_id: str,
        limit: int = 100,
        kinds: tuple[TransactionKind, ...] | None = None,
    ) -> list[CreditTransaction]:
        """Return the most recent transactions of *account_id*, newest first."""
        stmt = select(CreditTransactionTable).where(CreditTransactionTable.account_id == account_id)
        if kinds:
            stmt = stmt.where(CreditTransactionTable.kind.in_([k.value for k in kinds]))
        stmt = stmt.order_by(CreditTransactionTable.id.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return [_transaction_from_row(row) for row in result.scalars().all()]

    async def transactions_for_job(self, job_id: str) -> list[CreditTransaction]:
        result = await self._session.execute(
            select(CreditTransactionTable)
            .where(CreditTransactionTable.related_job_id == job_id)
            .order_by(CreditTransactionTable.id)
        )
        return [_transaction_from_row(row) for row in result.scalars().all()]

    async def ledger_balance(self, account_id: str) -> int:
        """Recompute the balance as the signed sum of the transaction log."""
        result = await self._session.execute(
            select(func.coalesce(func.sum(CreditTransactionTable.amount_signed), 0)).where(
                CreditTransactionTable.account_id == account_id
            )
        )
        return int(result.scalar_one())

    async def verify_account(self, account_id: str) -> LedgerAudit:
        """Compare the cached balance of *account_id* with its transaction log."""
        balance = await self.balance(account_id)
        ledger_sum = await self.ledger_balance(account_id)
        count_result = await self._session.execute(
            select(func.count()).where(CreditTransactionTable.account_id == account_id)
        )
        open_result = await self._session.execute(
            select(func.count()).where(
                CreditReservationTable.account_id == account_id,
                CreditReservationTable.status == ReservationStatus.RESERVED.value,
            )
        )
        audit = LedgerAudit(
            account_id=account_id,
            balance=balance,
            ledger_sum=ledger_sum,
            transaction_count=int(count_result.scalar_one()),
            open_reservations=int(open_result.scalar_one()),
        )
        if not audit.consistent:
            logger.critical(
                "Ledger drift on account %s: balance=%d log_sum=%d",
                account_id,
                balance,
                ledger_sum,
            )
        return audit

    async def usage_summary(self, account_id: str) -> dict[TransactionKind, int]:
        """Return the face-value total per transaction kind for *account_id*."""
        result = await self._session.execute(
            select(CreditTransactionTable.kind, func.sum(CreditTransactionTable.amount))
            .where(CreditTransactionTable.account_id == account_id)
            .group_by(CreditTransactionTable.kind)
        )
        totals = {kind: 0 for kind in TransactionKind}
        for kind, total in result.all():
            totals[TransactionKind(kind)] = int(total or 0)
        return totals

    async def list_account_ids(self) -> list[str]:
        result = await self._session.execute(select(CreditAccountTable.account_id).order_by(CreditAccountTable.account_id))
        return list(result.scalars().all())

    # -- Internal helpers ---------------------------------------------------

    async def _get_account(self, account_id: str) -> CreditAccountTable | None:
        result = await self._session.execute(
            select(CreditAccountTable)
            .where(CreditAccountTable.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _current_balance(self, account_id: str) -> int | None:
        result = await self._session.execute(
            select(CreditAccountTable.balance).where(CreditAccountTable.account_id == account_id)
        )
        return result.scalar_one_or_none()

    async def _get_reservation(self, job_id: str) -> CreditReservationTable | None:
        result = await self._session.execute(
            select(CreditReservationTable)
            .where(CreditReservationTable.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _settle(self, job_id: str, target: ReservationStatus, operation: str) -> Reservation:
        """Move the reservation of *job_id* from RESERVED to *target* or raise."""
        result = await self._session.execute(
            update(CreditReservationTable)
            .where(
                CreditReservationTable.job_id == job_id,
                CreditReservationTable.status == ReservationStatus.RESERVED.value,
            )
            .values(status=target.value, settled_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
            row = await self._get_reservation(job_id)
            current = row.status if row is not None else None
            logger.critical(
                "Ledger consistency violation: %s of job %s rejected (reservation status %s)",
                operation,
                job_id,
                current,
            )
            raise LedgerConsistencyError(job_id, operation, current)

        row = await self._get_reservation(job_id)
        assert row is not None  # noqa: S101
        return _reservation_from_row(row)

    async def _append(
        self,
        account_id: str,
        kind: TransactionKind,
        amount: int,
        amount_signed: int,
        job_id: str | None,
        reference: str | None,
    ) -> CreditTransaction:
        balance_after = await self._current_balance(account_id)
        assert balance_after is not None  # noqa: S101
        row = CreditTransactionTable(
            account_id=account_id,
            kind=kind.value,
            amount=amount,
            amount_signed=amount_signed,
            balance_after=balance_after,
            related_job_id=job_id,
            reference=reference,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            logger.critical("Duplicate %s entry rejected by the log for job %s", kind.value, job_id)
            raise LedgerConsistencyError(job_id or "-", kind.value.lower(), None) from exc
        return _transaction_from_row(row)
