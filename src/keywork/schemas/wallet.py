"""Pydantic schemas for worker wallet endpoints."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from keywork.schemas.jobs import TransactionResponse


class BalanceResponse(BaseModel):
    available: Decimal = Field(description="Completed payments and bonuses minus withdrawals")
    pending: Decimal = Field(description="Payment of submitted jobs awaiting approval")
    pending_withdrawals: Decimal
    total_earned: Decimal
    currency: str = "USD"


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    destination: str | None = Field(
        default=None,
        max_length=200,
        description="Payout destination reference (bank or wallet id)",
    )
