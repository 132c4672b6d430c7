"""
Public entry point of the provisioning engine.

``AccountFacade`` composes key generation, the endpoint pool, the funding
orchestrator and the wallet store, and owns the single active wallet for
the session.  Presentation code talks only to this class:

    async with AccountFacade.from_config(load_config("fundline.toml")) as facade:
        result = await facade.provision_and_fund(1.0)
        if not result.funded:
            show(result.message)          # the wallet is still usable
        reading = await facade.get_balance()

Identity creation and funding are separate outcomes bundled into one
``ProvisioningResult``: an unfunded wallet is a successful provisioning.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from fundline_core import keys
from fundline_core.backup import read_backup_file, write_backup_file
from fundline_core.config import FundlineConfig
from fundline_core.confirmation import ConfirmationPoller
from fundline_core.endpoints import EndpointPool
from fundline_core.errors import ErrorKind, FundlineError, TransportError
from fundline_core.funding import FundingAttempt, FundingOrchestrator
from fundline_core.wallet_store import WalletRecord, WalletStore, make_backend

logger = logging.getLogger("fundline_account")


@dataclass(frozen=True)
class ProvisioningResult:
    wallet: WalletRecord
    funded: bool
    attempts: tuple[FundingAttempt, ...]
    message: str


@dataclass(frozen=True)
class BalanceReading:
    """A balance as last seen; ``stale`` when the refresh itself failed."""
    wallet: WalletRecord
    balance: float
    stale: bool = False
    error: ErrorKind | None = None


class AccountFacade:

    def __init__(
        self,
        pool: EndpointPool,
        orchestrator: FundingOrchestrator,
        store: WalletStore,
        network: str = "devnet",
        default_amount: float = 1.0,
        balance_timeout: float = 10.0,
    ):
        self.pool = pool
        self.orchestrator = orchestrator
        self.store = store
        self.network = network
        self.default_amount = default_amount
        self.balance_timeout = balance_timeout
        self._active: WalletRecord | None = None

    @classmethod
    def from_config(cls, cfg: FundlineConfig) -> AccountFacade:
        pool = EndpointPool.from_urls(
            cfg.network.endpoints,
            config=cfg.pool,
            request_timeout=cfg.funding.request_timeout,
            commitment=cfg.network.commitment,
        )
        orchestrator = FundingOrchestrator(
            pool,
            poller=ConfirmationPoller(cfg.confirmation),
            config=cfg.funding,
        )
        store = WalletStore(
            make_backend(cfg.wallet.backend, cfg.wallet.path),
            persist_secret=cfg.wallet.persist_secret,
        )
        return cls(
            pool,
            orchestrator,
            store,
            network=cfg.network.name,
            default_amount=cfg.funding.default_amount,
            balance_timeout=cfg.funding.request_timeout,
        )

    async def __aenter__(self) -> AccountFacade:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.pool.aclose()
        close = getattr(self.store.backend, "close", None)
        if close is not None:
            close()

    # ---- active wallet ----

    @property
    def active_wallet(self) -> WalletRecord | None:
        return self._active

    def load_active(self) -> WalletRecord | None:
        """Adopt whatever wallet the store holds (None if absent or corrupt)."""
        self._active = self.store.load()
        return self._active

    def _activate(self, record: WalletRecord) -> None:
        self.store.save(record)
        self._active = record

    def disconnect(self) -> None:
        """Forget the active wallet and erase it from storage."""
        self.store.clear()
        self._active = None
        logger.info("Wallet disconnected")

    # ---- operations ----

    async def provision_and_fund(self, amount: float | None = None) -> ProvisioningResult:
        """
        Create a new account and try to fund it.

        EntropyFailure propagates (nothing can be provisioned without keys).
        Funding trouble never does: the result says whether the account was
        funded and what was tried.
        """
        amount = self.default_amount if amount is None else amount
        self.orchestrator.check_amount(amount)
        keypair = keys.generate()
        logger.info(f"Provisioning {keypair.public_identifier} on {self.network}")

        outcome = await self.orchestrator.fund(keypair, amount)
        record = WalletRecord.from_keypair(
            keypair, self.network, balance=amount if outcome.funded else 0.0
        )
        self._activate(record)
        return ProvisioningResult(
            wallet=record,
            funded=outcome.funded,
            attempts=outcome.attempts,
            message=outcome.message,
        )

    async def restore(self, source: Any, passphrase: str | None = None) -> WalletRecord:
        """
        Restore a wallet from secret material or a backup file.

        *source* is raw bytes, a list of byte values, a base58 secret string,
        or a path (``os.PathLike``) to an encrypted backup or plain wallet
        document.  InvalidSecretError is raised for anything unusable.
        Funding is never requested.
        """
        if isinstance(source, os.PathLike):
            record = read_backup_file(Path(source), passphrase)
            if record.network and record.network != self.network:
                logger.warning(
                    f"Backup was made on {record.network}; restoring onto {self.network}"
                )
            record = replace(record, network=self.network)
        else:
            keypair = keys.from_secret(source)
            record = WalletRecord.from_keypair(keypair, self.network)

        try:
            balance = await self._read_balance(record.public_identifier)
        except FundlineError as exc:
            logger.warning(f"Balance unavailable while restoring: {exc}")
        else:
            record = record.with_balance(balance)

        self._activate(record)
        logger.info(f"Restored {record.public_identifier}")
        return record

    async def refresh_balance(self, record: WalletRecord) -> BalanceReading:
        """
        One balance read on a freshly selected endpoint, no retries.

        On failure the last-known balance comes back marked stale.
        """
        try:
            balance = await self._read_balance(record.public_identifier)
        except FundlineError as exc:
            logger.info(f"Balance refresh failed, keeping last known value: {exc}")
            return BalanceReading(record, record.balance, stale=True, error=exc.kind)

        updated = record.with_balance(balance)
        active = self._active
        if active is not None and active.public_identifier == record.public_identifier:
            self._activate(updated)
        return BalanceReading(updated, balance)

    async def get_balance(self) -> BalanceReading:
        """Refresh the active wallet's balance."""
        if self._active is None:
            raise LookupError("No active wallet")
        return await self.refresh_balance(self._active)

    def export_backup(self, path: str | Path, passphrase: str) -> Path:
        if self._active is None:
            raise LookupError("No active wallet")
        return write_backup_file(path, self._active, passphrase)

    async def _read_balance(self, identifier: str) -> float:
        endpoint, client = await self.pool.select_healthy()
        try:
            return await asyncio.wait_for(
                client.get_balance(identifier, timeout=self.balance_timeout),
                timeout=self.balance_timeout,
            )
        except asyncio.TimeoutError as exc:
            self.pool.penalize(endpoint)
            raise TransportError(
                f"getBalance timed out after {self.balance_timeout}s", endpoint=endpoint.url
            ) from exc
        except FundlineError:
            self.pool.penalize(endpoint)
            raise
