"""Credit balance and transaction history for the calling account."""

from __future__ import annotations

from fastapi import APIRouter, Query
from report_engine.models.ledger import CreditTransaction, TransactionKind

from api.dependencies import ContextDep, ServiceDep
from api.schemas import BalanceResponse

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(service: ServiceDep, context: ContextDep) -> BalanceResponse:
    balance = await service.get_account_balance(context.account_id)
    return BalanceResponse(account_id=context.account_id, balance=balance)


@router.get("/transactions", response_model=list[CreditTransaction])
async def get_transactions(
    service: ServiceDep,
    context: ContextDep,
    limit: int = Query(100, ge=1, le=1000),
    kind: list[TransactionKind] | None = Query(None, description="Filter by transaction kind"),
) -> list[CreditTransaction]:
    """Return ledger entries for the caller's account, newest first."""
    return await service.get_transactions(
        context.account_id,
        limit=limit,
        kinds=tuple(kind) if kind else None,
    )
