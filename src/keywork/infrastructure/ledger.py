"""Ledger Client: the bridge to Keeper, the external escrow/balance service.

Every job is funded by a hold on the creating agent's Keeper balance. The
hold is released to the worker on approval, or voided (fully or partly
refunded) on cancellation.

Failure policy:
    - hold:    hard failure. Insufficient funds raise InsufficientFundsError,
               anything else UpstreamUnavailableError. Transport errors are
               retried a few times first; the reference makes a retry safe.
    - release: best effort. Failures are logged as ``ledger.release_failed``
               for reconciliation and the call returns False.
    - void:    best effort, same as release (``ledger.void_failed``).

Two implementations satisfy the LedgerClient protocol:
    - KeeperLedgerClient:    talks to Keeper over HTTP (httpx).
    - SimulatedLedgerClient: in-memory balances for development and tests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from keywork.domain.exceptions import (
    InsufficientFundsError,
    UpstreamUnavailableError,
)
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from keywork.config import Settings

logger = get_logger(__name__)

SERVICE_NAME = "keywork"
DEFAULT_SIMULATED_BALANCE = Decimal("1000.00")


@dataclass(frozen=True)
class AgentAccount:
    """Identity and spendable balance Keeper reports for an API key."""

    agent_id: str
    balance: Decimal


@runtime_checkable
class LedgerClient(Protocol):
    """Contract the job service relies on for escrow settlement."""

    async def hold(
        self, amount: Decimal, currency: str, reference: str, credential: str
    ) -> str:
        """Reserve ``amount`` on the agent's balance and return the hold id."""
        ...

    async def release(self, hold_id: str, credential: str) -> bool:
        """Pay a hold out to the platform. Never raises."""
        ...

    async def void(self, hold_id: str, refund_percent: int, credential: str) -> bool:
        """Cancel a hold, refunding ``refund_percent`` to the agent. Never raises."""
        ...

    async def agent_balance(self, api_key: str) -> AgentAccount | None:
        """Resolve an agent API key, or None if Keeper does not recognise it."""
        ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------------------------------
# Keeper over HTTP
# ---------------------------------------------------------------------------
class KeeperLedgerClient:
    """Keeper REST client.

    The agent's own API key is forwarded as the bearer credential on every
    call, so holds are always drawn from the calling agent's balance.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        hold_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )
        self._hold_attempts = max(1, hold_attempts)
        self._retry_wait_seconds = retry_wait_seconds

    @staticmethod
    def _headers(credential: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    async def hold(
        self, amount: Decimal, currency: str, reference: str, credential: str
    ) -> str:
        payload = {
            "amount": str(amount),
            "currency": currency,
            "reference": reference,
            "service": SERVICE_NAME,
        }
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._hold_attempts),
                wait=wait_exponential(
                    multiplier=self._retry_wait_seconds,
                    min=self._retry_wait_seconds,
                    max=4,
                ),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(
                        "/v1/escrow/hold",
                        json=payload,
                        headers=self._headers(credential),
                    )
        except httpx.TransportError as exc:
            logger.error(
                "ledger.hold_unreachable",
                reference=reference,
                attempts=self._hold_attempts,
                error=str(exc),
            )
            raise UpstreamUnavailableError("Keeper", "escrow hold failed") from exc

        if response.status_code == 402:
            detail = _error_message(response)
            logger.info("ledger.hold_declined", reference=reference, detail=detail)
            raise InsufficientFundsError(detail or InsufficientFundsError().message)

        if response.is_error:
            logger.error(
                "ledger.hold_failed",
                reference=reference,
                status_code=response.status_code,
            )
            raise UpstreamUnavailableError(
                "Keeper", f"escrow hold returned {response.status_code}"
            )

        hold_id = _json_body(response).get("hold_id")
        if not hold_id:
            raise UpstreamUnavailableError("Keeper", "escrow hold returned no hold_id")

        logger.info("ledger.hold_created", hold_id=hold_id, amount=str(amount))
        return str(hold_id)

    async def release(self, hold_id: str, credential: str) -> bool:
        return await self._settle(
            "release",
            "/v1/escrow/release",
            {"hold_id": hold_id},
            credential,
        )

    async def void(self, hold_id: str, refund_percent: int, credential: str) -> bool:
        return await self._settle(
            "void",
            "/v1/escrow/void",
            {"hold_id": hold_id, "refund_percent": refund_percent},
            credential,
        )

    async def _settle(
        self, action: str, path: str, payload: dict, credential: str
    ) -> bool:
        try:
            response = await self._client.post(
                path, json=payload, headers=self._headers(credential)
            )
        except httpx.HTTPError as exc:
            logger.warning(
                f"ledger.{action}_failed",
                hold_id=payload["hold_id"],
                error=str(exc),
            )
            return False

        if response.is_error:
            logger.warning(
                f"ledger.{action}_failed",
                hold_id=payload["hold_id"],
                status_code=response.status_code,
            )
            return False

        logger.info(f"ledger.{action}_ok", **payload)
        return True

    async def agent_balance(self, api_key: str) -> AgentAccount | None:
        try:
            response = await self._client.get(
                "/v1/agent/balance", headers=self._headers(api_key)
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError("Keeper", "agent lookup failed") from exc

        if response.is_error:
            return None

        data = _json_body(response)
        agent_id = data.get("user_id") or data.get("email") or api_key[3:15]
        return AgentAccount(
            agent_id=str(agent_id),
            balance=Decimal(str(data.get("credits", 0))),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response: httpx.Response) -> str:
    return str(_json_body(response).get("message") or "")


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------
@dataclass
class SimulatedHold:
    credential: str
    amount: Decimal
    currency: str
    reference: str
    state: str = "held"
    refund_percent: int | None = None


class SimulatedLedgerClient:
    """Keeper stand-in keeping per-credential balances in memory.

    A repeated hold with the same credential and reference returns the
    original hold id, mirroring Keeper's idempotent holds.
    """

    def __init__(self, default_balance: Decimal = DEFAULT_SIMULATED_BALANCE) -> None:
        self._default_balance = default_balance
        self.balances: dict[str, Decimal] = {}
        self.holds: dict[str, SimulatedHold] = {}
        self._by_reference: dict[tuple[str, str], str] = {}

    def balance_of(self, credential: str) -> Decimal:
        return self.balances.setdefault(credential, self._default_balance)

    async def hold(
        self, amount: Decimal, currency: str, reference: str, credential: str
    ) -> str:
        existing = self._by_reference.get((credential, reference))
        if existing is not None:
            return existing

        balance = self.balance_of(credential)
        if amount > balance:
            logger.info("ledger.hold_declined", reference=reference, simulated=True)
            raise InsufficientFundsError()

        hold_id = f"hold_{uuid.uuid4().hex[:16]}"
        self.balances[credential] = balance - amount
        self.holds[hold_id] = SimulatedHold(credential, amount, currency, reference)
        self._by_reference[(credential, reference)] = hold_id
        logger.info(
            "ledger.hold_created", hold_id=hold_id, amount=str(amount), simulated=True
        )
        return hold_id

    async def release(self, hold_id: str, credential: str) -> bool:
        record = self.holds.get(hold_id)
        if record is None or record.state != "held":
            logger.warning("ledger.release_failed", hold_id=hold_id, simulated=True)
            return False
        record.state = "released"
        logger.info("ledger.release_ok", hold_id=hold_id, simulated=True)
        return True

    async def void(self, hold_id: str, refund_percent: int, credential: str) -> bool:
        record = self.holds.get(hold_id)
        if record is None or record.state != "held":
            logger.warning("ledger.void_failed", hold_id=hold_id, simulated=True)
            return False
        refund = (record.amount * refund_percent / 100).quantize(Decimal("0.01"))
        self.balances[record.credential] = self.balance_of(record.credential) + refund
        record.state = "voided"
        record.refund_percent = refund_percent
        logger.info(
            "ledger.void_ok",
            hold_id=hold_id,
            refund_percent=refund_percent,
            simulated=True,
        )
        return True

    async def agent_balance(self, api_key: str) -> AgentAccount | None:
        return AgentAccount(
            agent_id=f"agent_{api_key[3:15]}",
            balance=self.balance_of(api_key),
        )

    async def aclose(self) -> None:
        return None


def build_ledger_client(settings: Settings) -> LedgerClient:
    """Pick the ledger implementation the settings ask for."""
    if settings.keeper_simulate:
        logger.info("ledger.simulated")
        return SimulatedLedgerClient()
    return KeeperLedgerClient(
        base_url=settings.keeper_api_url,
        timeout_seconds=settings.keeper_timeout_seconds,
        hold_attempts=settings.keeper_hold_attempts,
    )
