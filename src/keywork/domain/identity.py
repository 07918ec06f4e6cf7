"""Caller identities produced by the auth layer and consumed by services."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from keywork.domain.enums import TrustLevel


@dataclass(frozen=True)
class WorkerIdentity:
    """A worker authenticated by session token."""

    id: str
    trust_level: TrustLevel = TrustLevel.BASIC

    @property
    def rate_limit_key(self) -> str:
        return f"user:{self.id}"


@dataclass(frozen=True)
class AgentIdentity:
    """An agent authenticated by its Keeper API key.

    ``api_key`` is kept so ledger calls can be made with the agent's own
    credential.
    """

    id: str
    api_key: str = field(repr=False)
    balance: Decimal = Decimal("0")

    @property
    def rate_limit_key(self) -> str:
        return f"agent:{self.id}"
