"""
Funding orchestration: request funds for a new account, fail over across
endpoints, back off between attempts, and confirm the result.

Attempt loop (``max_attempts`` rounds, default 3):

  1. Select a healthy endpoint; endpoints that already failed during this
     call are probed last, so a retry lands on a different endpoint
     whenever one is available.
  2. Request funds.  Transport / rate-limit errors and refused requests
     penalize the endpoint and move on to the next round.
  3. Await confirmation.  CONFIRMED ends the loop; REJECTED or TIMED_OUT
     penalize the endpoint and move on.

Between rounds the orchestrator sleeps ``min(max_backoff, base * attempt)``.
Upstream rate limits reset on short fixed windows, so growth is linear.

Running out of attempts is not an error: the caller gets ``funded=False``
plus the complete attempt history.

An optional ``on_attempt`` callback sees each attempt as it happens: once
as PENDING when a request is accepted, then again with its final outcome.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable

from fundline_core.confirmation import ConfirmationPoller, ConfirmationStatus
from fundline_core.config import FundingConfig
from fundline_core.endpoints import Endpoint, EndpointPool
from fundline_core.errors import (
    ErrorKind,
    NoEndpointAvailableError,
    RejectedTransaction,
    TransportError,
    describe,
)
from fundline_core.keys import KeyPair

logger = logging.getLogger("fundline_funding")


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class FundingAttempt:
    """
    One round of the funding loop.  Immutable once recorded.

    ``PENDING`` is only ever seen by an ``on_attempt`` observer while a
    request waits for confirmation; finished histories hold terminal
    outcomes.  ``REJECTED`` covers every round that neither confirmed nor
    timed out, whether or not it reached the ledger:
    read ``error`` to tell a ledger refusal (``ErrorKind.REJECTED``) from
    transport trouble, rate limiting or an empty pool.
    """
    number: int
    endpoint: Endpoint | None
    requested_amount: float
    outcome: AttemptOutcome
    signature: str | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.CONFIRMED

    @property
    def refused_by_ledger(self) -> bool:
        return self.error is ErrorKind.REJECTED

    def summary(self) -> str:
        where = self.endpoint.name if self.endpoint else "-"
        text = f"#{self.number} {where}: {self.outcome.value}"
        if self.error is not None:
            text += f" ({describe(self.error)})"
        return text

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "endpoint": self.endpoint.url if self.endpoint else None,
            "requested_amount": self.requested_amount,
            "outcome": self.outcome.value,
            "signature": self.signature,
            "error": self.error.value if self.error else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class FundingOutcome:
    funded: bool
    attempts: tuple[FundingAttempt, ...]
    message: str
    signature: str | None = None
    endpoint: Endpoint | None = None


_CONFIRMATION_TO_OUTCOME = {
    ConfirmationStatus.CONFIRMED: AttemptOutcome.CONFIRMED,
    ConfirmationStatus.REJECTED: AttemptOutcome.REJECTED,
    ConfirmationStatus.TIMED_OUT: AttemptOutcome.TIMED_OUT,
}


class FundingOrchestrator:

    def __init__(
        self,
        pool: EndpointPool,
        poller: ConfirmationPoller | None = None,
        config: FundingConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_attempt: Callable[[FundingAttempt], None] | None = None,
    ):
        self.pool = pool
        self.poller = poller or ConfirmationPoller()
        self.config = config or FundingConfig()
        if self.config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._sleep = sleep
        self._on_attempt = on_attempt

    def backoff(self, attempt: int) -> float:
        cfg = self.config
        return min(cfg.max_backoff, cfg.backoff_base * attempt)

    def _report(self, attempt: FundingAttempt) -> None:
        if self._on_attempt is not None:
            self._on_attempt(attempt)

    def check_amount(self, amount: float) -> None:
        if not amount > 0:
            raise ValueError(f"Funding amount must be positive, got {amount}")
        if amount > self.config.max_request_amount:
            raise ValueError(
                f"Funding amount {amount} exceeds the per-request maximum "
                f"of {self.config.max_request_amount}"
            )

    async def fund(self, keypair: KeyPair, amount: float) -> FundingOutcome:
        """Fund *keypair*'s account with *amount*; never raises on exhaustion."""
        self.check_amount(amount)
        identifier = keypair.public_identifier
        attempts: list[FundingAttempt] = []
        failed: list[Endpoint] = []
        max_attempts = self.config.max_attempts

        for number in range(1, max_attempts + 1):
            attempt = await self._attempt(number, identifier, amount, failed)
            attempts.append(attempt)
            logger.info(f"Funding {attempt.summary()}")
            self._report(attempt)

            if attempt.succeeded:
                return FundingOutcome(
                    funded=True,
                    attempts=tuple(attempts),
                    message=(
                        f"Funded {amount} via {attempt.endpoint} "
                        f"after {number} attempt{'s' if number > 1 else ''}"
                    ),
                    signature=attempt.signature,
                    endpoint=attempt.endpoint,
                )

            if attempt.endpoint is not None and attempt.endpoint not in failed:
                failed.append(attempt.endpoint)
            if number < max_attempts:
                delay = self.backoff(number)
                logger.debug(f"Backing off {delay:.2f}s before attempt {number + 1}")
                await self._sleep(delay)

        logger.warning(
            f"Funding of {identifier} gave up after {max_attempts} attempts"
        )
        return FundingOutcome(
            funded=False,
            attempts=tuple(attempts),
            message=_exhaustion_message(attempts),
        )

    async def _attempt(
        self,
        number: int,
        identifier: str,
        amount: float,
        failed: list[Endpoint],
    ) -> FundingAttempt:
        try:
            endpoint, client = await self.pool.select_healthy(deprioritize=failed)
        except NoEndpointAvailableError as exc:
            return FundingAttempt(
                number, None, amount, AttemptOutcome.REJECTED,
                error=exc.kind, detail=str(exc),
            )

        try:
            signature = await asyncio.wait_for(
                client.request_funds(identifier, amount,
                                     timeout=self.config.request_timeout),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError:
            self.pool.penalize(endpoint)
            return FundingAttempt(
                number, endpoint, amount, AttemptOutcome.REJECTED,
                error=ErrorKind.TRANSPORT,
                detail=f"funding request timed out after {self.config.request_timeout}s",
            )
        except (TransportError, RejectedTransaction) as exc:
            self.pool.penalize(endpoint)
            return FundingAttempt(
                number, endpoint, amount, AttemptOutcome.REJECTED,
                error=exc.kind, detail=str(exc),
            )

        logger.debug(f"Funding request accepted by {endpoint}: {signature[:12]}...")
        pending = FundingAttempt(
            number, endpoint, amount, AttemptOutcome.PENDING, signature=signature,
        )
        self._report(pending)
        status = await self.poller.await_confirmation(client, signature)
        outcome = _CONFIRMATION_TO_OUTCOME[status]
        if outcome is AttemptOutcome.CONFIRMED:
            self.pool.record_success(endpoint)
            return replace(pending, outcome=outcome)

        self.pool.penalize(endpoint)
        kind = ErrorKind.TIMED_OUT if outcome is AttemptOutcome.TIMED_OUT else ErrorKind.REJECTED
        return replace(pending, outcome=outcome, error=kind, detail=describe(kind))


def _exhaustion_message(attempts: list[FundingAttempt]) -> str:
    tried = "; ".join(a.summary() for a in attempts)
    return (
        f"Account created but not funded after {len(attempts)} attempts: {tried}"
    )
