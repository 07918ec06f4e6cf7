"""Worker wallet: balance, transaction history and withdrawal requests.

available = completed job_payment + bonus - completed withdrawals
pending   = payment_amount of the worker's jobs awaiting approval

Withdrawals are recorded as ``pending`` transactions; the payout itself is
settled outside this service.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from keywork.config import get_settings
from keywork.domain.enums import TransactionStatus, TransactionType, TrustLevel
from keywork.domain.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from keywork.infrastructure.database.repositories import (
    JobRepository,
    TransactionRepository,
    WorkerRepository,
)
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.config import Settings
    from keywork.domain.identity import WorkerIdentity
    from keywork.infrastructure.database.orm_models import Transaction

logger = get_logger(__name__)

_EARNINGS = (TransactionType.JOB_PAYMENT, TransactionType.BONUS)
_WITHDRAWALS = (TransactionType.WITHDRAWAL,)


class WalletService:
    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._job_repo = JobRepository(session)
        self._transaction_repo = TransactionRepository(session)
        self._worker_repo = WorkerRepository(session)

    async def balance(self, worker: WorkerIdentity) -> dict:
        row = await self._worker_repo.get_by_id(worker.id)
        if row is None:
            raise NotFoundError("Worker", worker.id)

        available = await self._available(worker.id)
        pending_withdrawals = await self._transaction_repo.sum_for_user(
            worker.id, _WITHDRAWALS, TransactionStatus.PENDING
        )
        return {
            "available": available,
            "pending": await self._job_repo.sum_submitted_for_worker(worker.id),
            "pending_withdrawals": pending_withdrawals,
            "total_earned": Decimal(row.total_earned),
            "currency": self._settings.default_currency,
        }

    async def history(
        self,
        worker: WorkerIdentity,
        type_: TransactionType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        limit = max(1, min(limit, self._settings.job_list_max_limit))
        return await self._transaction_repo.list_for_user(
            worker.id, type_=type_, limit=limit, offset=max(0, offset)
        )

    async def withdraw(
        self,
        worker: WorkerIdentity,
        amount: Decimal,
        destination: str | None = None,
    ) -> Transaction:
        minimum = self._settings.min_withdrawal_amount
        if amount < minimum:
            raise ValidationError(f"Minimum withdrawal amount is {minimum}")
        if TrustLevel(worker.trust_level) == TrustLevel.BASIC:
            raise UnauthorizedError("Withdrawals require a verified trust level")

        available = await self._available(worker.id)
        pending = await self._transaction_repo.sum_for_user(
            worker.id, _WITHDRAWALS, TransactionStatus.PENDING
        )
        if amount > available - pending:
            raise InsufficientFundsError(
                f"Requested {amount} exceeds withdrawable balance {available - pending}"
            )

        txn = await self._transaction_repo.record(
            worker.id,
            TransactionType.WITHDRAWAL,
            amount,
            self._settings.default_currency,
            status=TransactionStatus.PENDING,
            description="Withdrawal request",
            metadata={"destination": destination} if destination else None,
        )
        logger.info(
            "wallet.withdrawal_requested",
            worker_id=worker.id,
            amount=str(amount),
            transaction_id=str(txn.id),
        )
        return txn

    async def _available(self, worker_id: str) -> Decimal:
        earned = await self._transaction_repo.sum_for_user(
            worker_id, _EARNINGS, TransactionStatus.COMPLETED
        )
        withdrawn = await self._transaction_repo.sum_for_user(
            worker_id, _WITHDRAWALS, TransactionStatus.COMPLETED
        )
        return earned - withdrawn
