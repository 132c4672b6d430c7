"""
Ranked endpoint pool with liveness probing and failure cooldown.

Candidates are fixed at construction and probed strictly in configured
order.  Each endpoint carries health metadata (consecutive failures, last
success / failure time).  Once an endpoint's failure count exceeds the
configured ceiling it is skipped until its cooldown has elapsed:

    cooldown(failures) = min(max_cooldown, base * 2 ** min(failures, cap))

Health metadata is the only mutable state shared between concurrent flows
and is guarded by a lock; the lock is never held across an await.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, NamedTuple
from urllib.parse import urlparse

from fundline_core.config import PoolConfig
from fundline_core.errors import NoEndpointAvailableError, TransportError
from fundline_core.rpc import LedgerClient

logger = logging.getLogger("fundline_pool")


@dataclass(frozen=True)
class Endpoint:
    url: str
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", urlparse(self.url).hostname or self.url)

    def __str__(self) -> str:
        return self.name


@dataclass
class EndpointHealth:
    failures: int = 0
    last_success: float | None = None
    last_failure: float | None = None


class Selection(NamedTuple):
    endpoint: Endpoint
    client: LedgerClient


ClientFactory = Callable[[Endpoint], LedgerClient]


class EndpointPool:
    """Ordered candidate endpoints; hands out the first healthy one."""

    def __init__(
        self,
        endpoints: Iterable[Endpoint],
        client_factory: ClientFactory,
        config: PoolConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._endpoints: tuple[Endpoint, ...] = tuple(endpoints)
        if not self._endpoints:
            raise ValueError("EndpointPool needs at least one endpoint")
        if len(set(self._endpoints)) != len(self._endpoints):
            raise ValueError("Duplicate endpoints in pool")
        self.config = config or PoolConfig()
        self._client_factory = client_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._health: dict[Endpoint, EndpointHealth] = {
            ep: EndpointHealth() for ep in self._endpoints
        }
        self._clients: dict[Endpoint, LedgerClient] = {}

    @classmethod
    def from_urls(
        cls,
        urls: Iterable[str],
        config: PoolConfig | None = None,
        request_timeout: float = 10.0,
        commitment: str = "confirmed",
    ) -> EndpointPool:
        """Build a pool of real JSON-RPC clients from a list of URLs."""
        def factory(ep: Endpoint) -> LedgerClient:
            return LedgerClient(ep.url, timeout=request_timeout, commitment=commitment)

        return cls([Endpoint(u) for u in urls], factory, config)

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        return self._endpoints

    def client_for(self, endpoint: Endpoint) -> LedgerClient:
        client = self._clients.get(endpoint)
        if client is None:
            client = self._client_factory(endpoint)
            self._clients[endpoint] = client
        return client

    # ---- health bookkeeping ----

    def cooldown_for(self, failures: int) -> float:
        cfg = self.config
        exponent = min(max(failures, 0), cfg.cooldown_cap)
        return min(cfg.max_cooldown, cfg.cooldown_base * (2 ** exponent))

    def in_cooldown(self, endpoint: Endpoint) -> bool:
        with self._lock:
            return self._in_cooldown_locked(self._health[endpoint], self._clock())

    def _in_cooldown_locked(self, health: EndpointHealth, now: float) -> bool:
        if health.failures <= self.config.failure_ceiling or health.last_failure is None:
            return False
        return now - health.last_failure < self.cooldown_for(health.failures)

    def cooldown_remaining(self, endpoint: Endpoint) -> float:
        with self._lock:
            health = self._health[endpoint]
            now = self._clock()
            if not self._in_cooldown_locked(health, now):
                return 0.0
            return self.cooldown_for(health.failures) - (now - health.last_failure)

    def penalize(self, endpoint: Endpoint) -> int:
        """Record one more failure; returns the new consecutive count."""
        with self._lock:
            health = self._health[endpoint]
            health.failures += 1
            health.last_failure = self._clock()
            failures = health.failures
        if failures > self.config.failure_ceiling:
            logger.warning(
                f"Endpoint {endpoint} cooling down for "
                f"{self.cooldown_for(failures):.1f}s after {failures} failures"
            )
        return failures

    def record_success(self, endpoint: Endpoint) -> None:
        with self._lock:
            health = self._health[endpoint]
            health.failures = 0
            health.last_success = self._clock()

    def health(self, endpoint: Endpoint) -> EndpointHealth:
        with self._lock:
            return replace(self._health[endpoint])

    def snapshot(self) -> list[dict]:
        with self._lock:
            now = self._clock()
            return [
                {
                    "endpoint": ep.name,
                    "url": ep.url,
                    "failures": h.failures,
                    "cooling_down": self._in_cooldown_locked(h, now),
                }
                for ep, h in self._health.items()
            ]

    # ---- selection ----

    def _probe_order(self, deprioritize: Iterable[Endpoint]) -> list[Endpoint]:
        pushed_back = set(deprioritize)
        first = [ep for ep in self._endpoints if ep not in pushed_back]
        last = [ep for ep in self._endpoints if ep in pushed_back]
        return first + last

    async def select_healthy(self, deprioritize: Iterable[Endpoint] = ()) -> Selection:
        """
        Probe candidates in priority order and return the first live one.

        Endpoints in *deprioritize* keep their relative order but are tried
        after every other candidate.  Endpoints inside their cooldown window
        are skipped without a probe.

        Raises NoEndpointAvailableError when nothing answers.
        """
        tried: list[str] = []
        skipped: list[str] = []
        for endpoint in self._probe_order(deprioritize):
            if self.in_cooldown(endpoint):
                skipped.append(endpoint.name)
                continue
            client = self.client_for(endpoint)
            try:
                await asyncio.wait_for(
                    client.get_version(timeout=self.config.probe_timeout),
                    timeout=self.config.probe_timeout,
                )
            except (TransportError, asyncio.TimeoutError) as exc:
                self.penalize(endpoint)
                tried.append(endpoint.name)
                logger.info(f"Probe failed for {endpoint}: {exc}")
                continue
            self.record_success(endpoint)
            logger.debug(f"Selected endpoint {endpoint}")
            return Selection(endpoint, client)

        detail = []
        if tried:
            detail.append(f"probe failed: {', '.join(tried)}")
        if skipped:
            detail.append(f"cooling down: {', '.join(skipped)}")
        raise NoEndpointAvailableError(
            "No healthy endpoint (" + "; ".join(detail) + ")"
        )

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()
