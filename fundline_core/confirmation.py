"""
Transaction confirmation polling.

A poll that fails on the network is a *miss*, not a verdict: the poller
keeps going until it sees a terminal status, the deadline passes, or too
many consecutive misses pile up (which resolves as TIMED_OUT).  Only a
status reported by the endpoint itself can produce REJECTED.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from fundline_core.config import ConfirmationConfig
from fundline_core.errors import TransportError
from fundline_core.rpc import LedgerClient, TxStatus

logger = logging.getLogger("fundline_confirm")


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class ConfirmationPoller:

    def __init__(
        self,
        config: ConfirmationConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ConfirmationConfig()
        self._sleep = sleep

    async def await_confirmation(
        self,
        client: LedgerClient,
        signature: str,
        timeout: float | None = None,
    ) -> ConfirmationStatus:
        """Poll *client* until *signature* is final or *timeout* elapses."""
        loop = asyncio.get_running_loop()
        budget = self.config.timeout if timeout is None else timeout
        deadline = loop.time() + budget
        misses = 0
        polls = 0

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            polls += 1
            try:
                status = await asyncio.wait_for(
                    client.confirm_transaction(signature, timeout=remaining),
                    timeout=remaining,
                )
            except (TransportError, asyncio.TimeoutError) as exc:
                misses += 1
                logger.debug(f"Poll {polls} for {signature[:12]}... missed: {exc}")
                if misses > self.config.max_poll_errors:
                    logger.warning(
                        f"Giving up on {signature[:12]}... after {misses} failed polls"
                    )
                    return ConfirmationStatus.TIMED_OUT
            else:
                misses = 0
                if status is TxStatus.CONFIRMED:
                    logger.info(f"Transaction {signature[:12]}... confirmed after {polls} polls")
                    return ConfirmationStatus.CONFIRMED
                if status is TxStatus.FAILED:
                    logger.warning(f"Transaction {signature[:12]}... failed on-ledger")
                    return ConfirmationStatus.REJECTED

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self._sleep(min(self.config.poll_interval, remaining))

        logger.warning(f"Transaction {signature[:12]}... not confirmed within {budget}s")
        return ConfirmationStatus.TIMED_OUT
