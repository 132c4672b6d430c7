"""
Test suite for fundline_core.account: AccountFacade.

Covers:
  - provision_and_fund: funded after failover, unfunded after exhaustion
  - Identity is kept and persisted even when funding fails
  - restore from secret material and from backup files, never funding
  - refresh_balance fresh vs stale readings
  - disconnect / load_active
  - Cancellation leaves no partial wallet behind
"""

import asyncio
import dataclasses

import pytest

from fundline_core import keys
from fundline_core.account import AccountFacade
from fundline_core.backup import write_backup_file
from fundline_core.config import FundlineConfig
from fundline_core.errors import ErrorKind, InvalidSecretError, TransportError
from fundline_core.funding import AttemptOutcome
from fundline_core.rpc import TxStatus
from fundline_core.wallet_store import MemoryBackend, WalletRecord, WalletStore


@pytest.fixture
def make_facade(make_pool, make_orchestrator, memory_store):
    def _make(clients, store=None):
        pool = make_pool(clients)
        return AccountFacade(
            pool,
            make_orchestrator(pool),
            store or memory_store,
            network="devnet",
            default_amount=0.1,
            balance_timeout=1.0,
        )
    return _make


def _failing(fake_client, name):
    return fake_client(name, fund_error=TransportError(f"{name} refused connection"))


# ═══════════════════════════════════════════════════════════════════
#  Provisioning
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestProvisionAndFund:

    async def test_funded_after_failover(self, make_facade, fake_client, memory_store, sleeps):
        c = fake_client("C", statuses=[TxStatus.PENDING, TxStatus.CONFIRMED])
        facade = make_facade({
            "A": _failing(fake_client, "A"),
            "B": _failing(fake_client, "B"),
            "C": c,
        })
        result = await facade.provision_and_fund(0.1)

        assert result.funded
        assert len(result.attempts) == 3
        assert [a.endpoint.name for a in result.attempts] == ["A", "B", "C"]
        assert result.attempts[-1].outcome is AttemptOutcome.CONFIRMED
        assert c.polls == 2
        assert result.wallet.balance == 0.1
        assert facade.active_wallet == result.wallet
        assert memory_store.load() == result.wallet
        assert sleeps == [0.5, 1.0]

    async def test_unfunded_wallet_still_provisioned(self, make_facade, fake_client, memory_store):
        facade = make_facade({name: _failing(fake_client, name) for name in ("A", "B", "C")})
        result = await facade.provision_and_fund()

        assert not result.funded
        assert len(result.attempts) == 3
        assert "not funded" in result.message
        wallet = result.wallet
        assert wallet.balance == 0.0
        assert keys.derive_public(wallet.secret_material) == wallet.public_identifier
        assert memory_store.load() == wallet
        assert facade.active_wallet == wallet

    async def test_uses_default_amount(self, make_facade, fake_client):
        a = fake_client("A")
        facade = make_facade({"A": a})
        result = await facade.provision_and_fund()
        assert a.fund_calls == [(result.wallet.public_identifier, 0.1)]

    async def test_invalid_amount_creates_nothing(self, make_facade, fake_client, memory_store):
        a = fake_client("A")
        facade = make_facade({"A": a})
        with pytest.raises(ValueError):
            await facade.provision_and_fund(-1)
        assert memory_store.load() is None
        assert a.version_calls == 0

    async def test_new_wallet_replaces_active(self, make_facade, fake_client, memory_store):
        facade = make_facade({"A": fake_client("A")})
        first = await facade.provision_and_fund()
        second = await facade.provision_and_fund()
        assert first.wallet.public_identifier != second.wallet.public_identifier
        assert memory_store.load() == second.wallet

    async def test_result_wallet_cannot_be_altered(self, make_facade, fake_client, memory_store):
        facade = make_facade({"A": fake_client("A")})
        result = await facade.provision_and_fund(0.1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.wallet.balance = 999.0
        assert facade.active_wallet.balance == 0.1
        assert memory_store.load().balance == 0.1

    async def test_cancellation_leaves_no_wallet(self, make_facade, fake_client, memory_store):
        a = fake_client("A", hang_on_fund=True)
        facade = make_facade({"A": a})
        task = asyncio.create_task(facade.provision_and_fund(0.1))
        while not a.fund_calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert memory_store.load() is None
        assert facade.active_wallet is None
        assert a.polls == 0


# ═══════════════════════════════════════════════════════════════════
#  Restore
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestRestore:

    async def test_restore_from_secret(self, make_facade, fake_client, memory_store):
        a = fake_client("A", balance=2.5)
        facade = make_facade({"A": a})
        kp = keys.generate()
        record = await facade.restore(kp.secret)

        assert record.public_identifier == kp.public_identifier
        assert record.balance == 2.5
        assert a.fund_calls == []
        assert memory_store.load() == record
        assert facade.active_wallet == record

    async def test_restore_from_byte_list(self, make_facade, fake_client):
        facade = make_facade({"A": fake_client("A")})
        kp = keys.generate()
        record = await facade.restore(list(kp.secret))
        assert record.public_identifier == kp.public_identifier

    async def test_invalid_secret(self, make_facade, fake_client, memory_store):
        a = fake_client("A")
        facade = make_facade({"A": a})
        with pytest.raises(InvalidSecretError):
            await facade.restore(b"\x00" * 10)
        assert memory_store.load() is None
        assert a.fund_calls == []
        assert a.balance_calls == 0

    async def test_restore_without_balance(self, make_facade, fake_client):
        a = fake_client("A")
        a.balance_error = TransportError("balance unavailable")
        facade = make_facade({"A": a})
        record = await facade.restore(keys.generate().secret)
        assert record.balance == 0.0
        assert facade.active_wallet == record

    async def test_restore_from_backup_file(self, make_facade, fake_client, tmp_path):
        original = WalletRecord.from_keypair(keys.generate(), "testnet")
        path = write_backup_file(tmp_path / "backup.json", original, "pw", iterations=1_000)
        facade = make_facade({"A": fake_client("A", balance=1.0)})

        record = await facade.restore(path, passphrase="pw")
        assert record.public_identifier == original.public_identifier
        assert record.network == "devnet"
        assert record.balance == 1.0

    async def test_restore_backup_wrong_passphrase(self, make_facade, fake_client, tmp_path):
        original = WalletRecord.from_keypair(keys.generate(), "devnet")
        path = write_backup_file(tmp_path / "backup.json", original, "pw", iterations=1_000)
        facade = make_facade({"A": fake_client("A")})
        with pytest.raises(InvalidSecretError):
            await facade.restore(path, passphrase="nope")
        assert facade.active_wallet is None


# ═══════════════════════════════════════════════════════════════════
#  Balance and session
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestBalance:

    async def test_fresh_reading(self, make_facade, fake_client, memory_store):
        a = fake_client("A", balance=3.0)
        facade = make_facade({"A": a})
        await facade.restore(keys.generate().secret)
        a.balance = 4.0

        reading = await facade.get_balance()
        assert not reading.stale
        assert reading.error is None
        assert reading.balance == 4.0
        assert facade.active_wallet.balance == 4.0
        assert memory_store.load().balance == 4.0

    async def test_stale_reading_on_failure(self, make_facade, fake_client):
        a = fake_client("A", balance=3.0)
        facade = make_facade({"A": a})
        await facade.restore(keys.generate().secret)
        a.balance_error = TransportError("gateway timeout")

        reading = await facade.get_balance()
        assert reading.stale
        assert reading.error is ErrorKind.TRANSPORT
        assert reading.balance == 3.0
        assert facade.active_wallet.balance == 3.0

    async def test_stale_when_no_endpoint(self, make_facade, fake_client):
        a = fake_client("A")
        facade = make_facade({"A": a})
        record = WalletRecord.from_keypair(keys.generate(), "devnet", balance=0.7)
        a.version_error = TransportError("down")
        reading = await facade.refresh_balance(record)
        assert reading.stale
        assert reading.error is ErrorKind.NO_ENDPOINT
        assert reading.balance == 0.7

    async def test_refresh_other_wallet_keeps_active(self, make_facade, fake_client):
        facade = make_facade({"A": fake_client("A", balance=9.0)})
        active = await facade.restore(keys.generate().secret)
        other = WalletRecord.from_keypair(keys.generate(), "devnet")
        reading = await facade.refresh_balance(other)
        assert reading.wallet.public_identifier == other.public_identifier
        assert facade.active_wallet.public_identifier == active.public_identifier

    async def test_no_active_wallet(self, make_facade, fake_client):
        facade = make_facade({"A": fake_client("A")})
        with pytest.raises(LookupError):
            await facade.get_balance()

    async def test_balance_failure_penalizes_endpoint(self, make_facade, fake_client):
        a = fake_client("A")
        facade = make_facade({"A": a})
        await facade.restore(keys.generate().secret)
        a.balance_error = TransportError("flaky")
        await facade.get_balance()
        assert facade.pool.health(facade.pool.endpoints[0]).failures == 1


class TestSession:

    def test_disconnect(self, make_facade, fake_client, memory_store):
        facade = make_facade({"A": fake_client("A")})
        record = WalletRecord.from_keypair(keys.generate(), "devnet")
        memory_store.save(record)
        assert facade.load_active() == record
        facade.disconnect()
        assert facade.active_wallet is None
        assert memory_store.load() is None

    def test_load_active_from_corrupt_store(self, make_facade, fake_client):
        store = WalletStore(MemoryBackend('{"publicIdentifier": "x"}'))
        facade = make_facade({"A": fake_client("A")}, store=store)
        assert facade.load_active() is None

    def test_export_without_wallet(self, make_facade, fake_client, tmp_path):
        facade = make_facade({"A": fake_client("A")})
        with pytest.raises(LookupError):
            facade.export_backup(tmp_path / "b.json", "pw")

    def test_from_config(self):
        cfg = FundlineConfig()
        cfg.network.name = "localnet"
        cfg.network.endpoints = ["http://127.0.0.1:8899", "http://127.0.0.1:8900"]
        cfg.wallet.backend = "memory"
        facade = AccountFacade.from_config(cfg)
        assert facade.network == "localnet"
        assert [ep.url for ep in facade.pool.endpoints] == cfg.network.endpoints
        assert facade.default_amount == cfg.funding.default_amount
        assert facade.store.persist_secret is True


@pytest.mark.asyncio
class TestLifecycle:

    async def test_context_manager_closes_pool(self, make_facade, fake_client):
        a = fake_client("A")
        async with make_facade({"A": a}) as facade:
            await facade.provision_and_fund()
        assert a.closed
