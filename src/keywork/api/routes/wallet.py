"""Worker wallet routes.

Routes:
    GET    /api/v1/wallet/balance      : Available, pending and lifetime earnings
    GET    /api/v1/wallet/transactions : Paginated history, optionally by type
    POST   /api/v1/wallet/withdraw     : Request a withdrawal
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from keywork.api.deps import get_current_worker, get_wallet_service
from keywork.domain.enums import TransactionType
from keywork.schemas.jobs import TransactionResponse
from keywork.schemas.wallet import BalanceResponse, TransactionListResponse, WithdrawRequest

if TYPE_CHECKING:
    from keywork.domain.identity import WorkerIdentity
    from keywork.services import WalletService

router = APIRouter(prefix="/api/v1/wallet", tags=["Wallet"])


@router.get("/balance", response_model=BalanceResponse, summary="Wallet balance")
async def get_balance(
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    return BalanceResponse(**await svc.balance(worker))


@router.get(
    "/transactions",
    response_model=TransactionListResponse,
    summary="Transaction history",
)
async def list_transactions(
    type: TransactionType | None = None,  # noqa: A002 - public query parameter name
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: WalletService = Depends(get_wallet_service),
) -> TransactionListResponse:
    transactions, total = await svc.history(worker, type_=type, limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/withdraw",
    response_model=TransactionResponse,
    status_code=201,
    summary="Request a withdrawal",
)
async def withdraw(
    request: WithdrawRequest,
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: WalletService = Depends(get_wallet_service),
) -> TransactionResponse:
    """Records a pending withdrawal against the available balance."""
    txn = await svc.withdraw(worker, request.amount, destination=request.destination)
    return TransactionResponse.model_validate(txn)
