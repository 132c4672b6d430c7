"""
JSON-RPC client for a single ledger endpoint.

Wraps the four operations the engine needs from the network:

    getVersion            liveness probe
    getBalance            balance of an account, in lamports
    requestAirdrop        ask the endpoint to fund an account
    getSignatureStatuses  confirmation status of a submitted transaction

Every call is bounded by an ``aiohttp.ClientTimeout``.  Failures are mapped
onto the error taxonomy:

    HTTP 429 or a rate-limit fault        -> RateLimitedError
    other non-2xx, connection trouble,
    timeouts, malformed bodies            -> TransportError
    fault returned for requestAirdrop     -> RejectedTransaction
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import Any

import aiohttp

from fundline_core.errors import (
    RateLimitedError,
    RejectedTransaction,
    TransportError,
)

logger = logging.getLogger("fundline_rpc")

LAMPORTS_PER_UNIT = 1_000_000_000

DEFAULT_TIMEOUT = 10.0

_RATE_LIMIT_HINTS = ("rate limit", "too many requests", "airdrop limit", "429")


def to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_UNIT))


def from_lamports(lamports: int) -> float:
    return lamports / LAMPORTS_PER_UNIT


class TxStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class LedgerClient:
    """Async JSON-RPC client bound to one endpoint URL."""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        commitment: str = "confirmed",
        session: aiohttp.ClientSession | None = None,
    ):
        if commitment not in _COMMITMENT_RANK:
            raise ValueError(f"Unknown commitment level: {commitment}")
        self.url = url
        self.timeout = timeout
        self.commitment = commitment
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ---- transport ----

    async def _call(self, method: str, params: list[Any],
                    timeout: float | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        session = await self._get_session()
        budget = self.timeout if timeout is None else timeout
        try:
            async with session.post(
                self.url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=budget),
            ) as resp:
                if resp.status == 429:
                    raise RateLimitedError(
                        f"{method}: HTTP 429 from {self.url}", endpoint=self.url
                    )
                if resp.status >= 400:
                    raise TransportError(
                        f"{method}: HTTP {resp.status} from {self.url}", endpoint=self.url
                    )
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    raise TransportError(
                        f"{method}: malformed response from {self.url}", endpoint=self.url
                    ) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"{method}: timed out after {budget}s on {self.url}", endpoint=self.url
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(
                f"{method}: {exc.__class__.__name__} on {self.url}", endpoint=self.url
            ) from exc

        if not isinstance(data, dict):
            raise TransportError(f"{method}: response is not an object", endpoint=self.url)
        fault = data.get("error")
        if fault:
            raise self._fault(method, fault)
        if "result" not in data:
            raise TransportError(f"{method}: response has no result", endpoint=self.url)
        return data["result"]

    def _fault(self, method: str, fault: Any) -> Exception:
        if isinstance(fault, dict):
            text = f"{fault.get('code', '')} {fault.get('message', '')}".strip()
        else:
            text = str(fault)
        lowered = text.lower()
        if any(hint in lowered for hint in _RATE_LIMIT_HINTS):
            return RateLimitedError(f"{method}: {text}", endpoint=self.url)
        if method == "requestAirdrop":
            return RejectedTransaction(f"{method}: {text}", endpoint=self.url)
        return TransportError(f"{method}: {text}", endpoint=self.url)

    # ---- ledger operations ----

    async def get_version(self, timeout: float | None = None) -> dict[str, Any]:
        result = await self._call("getVersion", [], timeout)
        if not isinstance(result, dict):
            raise TransportError("getVersion: unexpected result", endpoint=self.url)
        return result

    async def get_balance(self, identifier: str, timeout: float | None = None) -> float:
        """Balance of *identifier* in whole units."""
        result = await self._call(
            "getBalance", [identifier, {"commitment": self.commitment}], timeout
        )
        value = result.get("value") if isinstance(result, dict) else result
        if not isinstance(value, int) or isinstance(value, bool):
            raise TransportError("getBalance: unexpected result", endpoint=self.url)
        return from_lamports(value)

    async def request_funds(self, identifier: str, amount: float,
                            timeout: float | None = None) -> str:
        """Request *amount* whole units for *identifier*; returns the signature."""
        signature = await self._call(
            "requestAirdrop", [identifier, to_lamports(amount)], timeout
        )
        if not isinstance(signature, str) or not signature:
            raise TransportError("requestAirdrop: no signature returned", endpoint=self.url)
        return signature

    async def confirm_transaction(self, signature: str,
                                  timeout: float | None = None) -> TxStatus:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
            timeout,
        )
        try:
            entry = result["value"][0]
        except (TypeError, KeyError, IndexError) as exc:
            raise TransportError(
                "getSignatureStatuses: unexpected result", endpoint=self.url
            ) from exc
        if entry is None:
            return TxStatus.PENDING
        if not isinstance(entry, dict):
            raise TransportError("getSignatureStatuses: unexpected entry", endpoint=self.url)
        if entry.get("err") is not None:
            return TxStatus.FAILED
        level = entry.get("confirmationStatus") or "processed"
        if _COMMITMENT_RANK.get(level, -1) >= _COMMITMENT_RANK[self.commitment]:
            return TxStatus.CONFIRMED
        return TxStatus.PENDING

    def __repr__(self) -> str:
        return f"LedgerClient({self.url})"
