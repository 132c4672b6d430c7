"""
Single-slot persistence for the active wallet.

The store holds at most one WalletRecord.  ``save`` overwrites, ``load``
validates, ``clear`` forgets.  Anything unreadable on load (missing fields,
bad JSON, a secret that does not derive the stored identifier) degrades to
``None`` with a warning rather than an exception.

Persisted document:

    {
      "publicIdentifier": "<base58>",
      "secretMaterial": [<byte>, ...],      # omitted when secrets are not kept
      "network": "devnet",
      "createdAt": "2026-01-01T00:00:00+00:00",
      "balance": 1.0
    }

Backends only move opaque text; three are provided:

    JsonFileBackend   one JSON file, replaced atomically
    SqliteBackend     one row in a SQLite table
    MemoryBackend     in-process, for tests and ephemeral sessions
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from fundline_core.errors import CorruptPersistedState, InvalidSecretError
from fundline_core.keys import KeyPair, derive_public, is_valid_identifier

logger = logging.getLogger("fundline_storage")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class WalletRecord:
    public_identifier: str
    secret_material: bytes | None = field(repr=False)
    network: str
    created_at: str = field(default_factory=utc_now_iso)
    balance: float = 0.0

    @classmethod
    def from_keypair(cls, keypair: KeyPair, network: str, balance: float = 0.0) -> WalletRecord:
        return cls(
            public_identifier=keypair.public_identifier,
            secret_material=keypair.secret,
            network=network,
            balance=balance,
        )

    def with_balance(self, balance: float) -> WalletRecord:
        return replace(self, balance=balance)

    def public_only(self) -> WalletRecord:
        return replace(self, secret_material=None)

    def verify(self) -> None:
        """Raise CorruptPersistedState if the record violates its invariant."""
        if not is_valid_identifier(self.public_identifier):
            raise CorruptPersistedState("public identifier is not a valid key")
        if self.secret_material is None:
            return
        try:
            derived = derive_public(self.secret_material)
        except InvalidSecretError as exc:
            raise CorruptPersistedState(f"secret material unusable: {exc}") from exc
        if derived != self.public_identifier:
            raise CorruptPersistedState("secret material does not match public identifier")

    # ---- document form ----

    def to_document(self, include_secret: bool = True) -> dict[str, Any]:
        doc: dict[str, Any] = {"publicIdentifier": self.public_identifier}
        if include_secret and self.secret_material is not None:
            doc["secretMaterial"] = list(self.secret_material)
        doc["network"] = self.network
        doc["createdAt"] = self.created_at
        doc["balance"] = self.balance
        return doc

    @classmethod
    def from_document(cls, doc: Any) -> WalletRecord:
        """Parse and validate a persisted document; raises CorruptPersistedState."""
        if not isinstance(doc, dict):
            raise CorruptPersistedState("wallet document is not an object")
        try:
            identifier = doc["publicIdentifier"]
            network = doc["network"]
            created_at = doc["createdAt"]
        except KeyError as exc:
            raise CorruptPersistedState(f"wallet document missing {exc.args[0]}") from exc
        if not isinstance(identifier, str) or not isinstance(network, str) \
                or not isinstance(created_at, str):
            raise CorruptPersistedState("wallet document has mistyped fields")

        secret = None
        raw_secret = doc.get("secretMaterial")
        if raw_secret is not None:
            if not isinstance(raw_secret, list) or not all(
                isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255
                for b in raw_secret
            ):
                raise CorruptPersistedState("secretMaterial is not a byte array")
            secret = bytes(raw_secret)

        balance = doc.get("balance", 0.0)
        if isinstance(balance, bool) or not isinstance(balance, (int, float)):
            raise CorruptPersistedState("balance is not a number")

        record = cls(
            public_identifier=identifier,
            secret_material=secret,
            network=network,
            created_at=created_at,
            balance=float(balance),
        )
        record.verify()
        return record


# ── backends ─────────────────────────────────────────────────────────


class StorageBackend(Protocol):
    def read(self) -> str | None: ...
    def write(self, data: str) -> None: ...
    def delete(self) -> None: ...


class MemoryBackend:
    def __init__(self, data: str | None = None):
        self.data = data

    def read(self) -> str | None:
        return self.data

    def write(self, data: str) -> None:
        self.data = data

    def delete(self) -> None:
        self.data = None


class JsonFileBackend:
    """One file; writes go to a temp file that replaces the target."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, data: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".wallet-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


class SqliteBackend:
    """Single-row SQLite table holding the wallet document."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/wallet.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Wallet database opened: {db_path}")

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS wallet (
                slot       INTEGER PRIMARY KEY CHECK (slot = 1),
                document   TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Wallet database schema v{row['version']} is newer than this "
                f"software (v{self.CURRENT_SCHEMA_VERSION})."
            )

    def read(self) -> str | None:
        row = self._conn.execute("SELECT document FROM wallet WHERE slot = 1").fetchone()
        return row["document"] if row else None

    def write(self, data: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO wallet (slot, document, updated_at) VALUES (1, ?, ?)",
            (data, utc_now_iso()),
        )
        self._conn.commit()

    def delete(self) -> None:
        self._conn.execute("DELETE FROM wallet WHERE slot = 1")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SqliteBackend:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def make_backend(kind: str, path: str) -> StorageBackend:
    if kind == "file":
        return JsonFileBackend(path)
    if kind == "sqlite":
        return SqliteBackend(path)
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown wallet backend: {kind}")


# ── store ────────────────────────────────────────────────────────────


class WalletStore:
    """At most one persisted wallet; all access serialized by a lock."""

    def __init__(self, backend: StorageBackend, persist_secret: bool = True):
        self.backend = backend
        self.persist_secret = persist_secret
        self._lock = threading.RLock()

    def save(self, record: WalletRecord) -> None:
        record.verify()
        doc = record.to_document(include_secret=self.persist_secret)
        data = json.dumps(doc, indent=2)
        with self._lock:
            self.backend.write(data)
        logger.info(f"Saved wallet {record.public_identifier} ({record.network})")

    def load(self) -> WalletRecord | None:
        with self._lock:
            data = self.backend.read()
        if data is None:
            return None
        try:
            doc = json.loads(data)
            return WalletRecord.from_document(doc)
        except ValueError as exc:
            logger.warning(f"Stored wallet is not valid JSON; ignoring it ({exc})")
        except CorruptPersistedState as exc:
            logger.warning(f"Stored wallet rejected: {exc}")
        return None

    def clear(self) -> None:
        with self._lock:
            self.backend.delete()
        logger.info("Cleared stored wallet")
