"""
Shared pytest fixtures for the Fundline test suite.
"""

from __future__ import annotations

import asyncio

import pytest

from fundline_core.config import ConfirmationConfig, FundingConfig, PoolConfig
from fundline_core.confirmation import ConfirmationPoller
from fundline_core.endpoints import Endpoint, EndpointPool
from fundline_core.funding import FundingOrchestrator
from fundline_core.rpc import TxStatus
from fundline_core.wallet_store import MemoryBackend, WalletStore


class FakeLedgerClient:
    """
    Scripted stand-in for LedgerClient.

    ``statuses`` is consumed one entry per confirmation poll; the last entry
    repeats.  Entries may be TxStatus values or exceptions to raise.
    """

    def __init__(self, name, version_error=None, fund_error=None,
                 statuses=(TxStatus.CONFIRMED,), balance=0.0, hang_on_fund=False):
        self.name = name
        self.version_error = version_error
        self.fund_error = fund_error
        self.statuses = list(statuses)
        self.balance = balance
        self.balance_error = None
        self.hang_on_fund = hang_on_fund
        self.version_calls = 0
        self.fund_calls = []
        self.polls = 0
        self.balance_calls = 0
        self.closed = False

    async def get_version(self, timeout=None):
        self.version_calls += 1
        if self.version_error is not None:
            raise self.version_error
        return {"solana-core": "1.18.0"}

    async def get_balance(self, identifier, timeout=None):
        self.balance_calls += 1
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def request_funds(self, identifier, amount, timeout=None):
        self.fund_calls.append((identifier, amount))
        if self.hang_on_fund:
            await asyncio.Event().wait()
        if self.fund_error is not None:
            raise self.fund_error
        return f"sig-{self.name}-{len(self.fund_calls)}"

    async def confirm_transaction(self, signature, timeout=None):
        self.polls += 1
        entry = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_client():
    """The FakeLedgerClient class, for building scripted endpoints."""
    return FakeLedgerClient


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool_config():
    return PoolConfig(
        probe_timeout=0.5,
        failure_ceiling=2,
        cooldown_base=1.0,
        cooldown_cap=4,
        max_cooldown=100.0,
    )


@pytest.fixture
def make_pool(clock, pool_config):
    """Build an EndpointPool from {name: FakeLedgerClient} in priority order."""
    def _make(clients, config=None):
        endpoints = [Endpoint(f"http://{name.lower()}.test", name) for name in clients]
        by_name = dict(clients)
        return EndpointPool(
            endpoints,
            lambda ep: by_name[ep.name],
            config=config or pool_config,
            clock=clock,
        )
    return _make


@pytest.fixture
def sleeps():
    """Records of backoff delays requested through the fake sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)
    return _sleep


@pytest.fixture
def funding_config():
    return FundingConfig(
        default_amount=0.1,
        max_request_amount=5.0,
        max_attempts=3,
        backoff_base=0.5,
        max_backoff=1.0,
        request_timeout=1.0,
    )


@pytest.fixture
def confirmation_config():
    return ConfirmationConfig(poll_interval=0.01, timeout=0.3, max_poll_errors=3)


@pytest.fixture
def make_orchestrator(funding_config, confirmation_config, fake_sleep):
    def _make(pool, config=None, on_attempt=None):
        return FundingOrchestrator(
            pool,
            poller=ConfirmationPoller(confirmation_config),
            config=config or funding_config,
            sleep=fake_sleep,
            on_attempt=on_attempt,
        )
    return _make


@pytest.fixture
def memory_store():
    return WalletStore(MemoryBackend())
