"""
Passphrase-protected wallet backups.

A backup is a JSON document that can be written anywhere by the user and
later handed to ``AccountFacade.restore``.  The secret is sealed with
AES-256-GCM under a PBKDF2-HMAC-SHA256 key; the public fields stay readable
so a backup can be identified without the passphrase.

    {
      "version": 1,
      "kind": "fundline-backup",
      "publicIdentifier": "...",
      "network": "devnet",
      "createdAt": "...",
      "ciphertext": "<hex>", "nonce": "<hex>", "tag": "<hex>",
      "salt": "<hex>", "kdf": "pbkdf2-hmac-sha256", "kdf_iterations": 600000
    }

A plain wallet document (the WalletStore format) is also accepted by
``read_backup_file`` so that exported files and raw store files restore
the same way.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

from Crypto.Cipher import AES

from fundline_core.errors import CorruptPersistedState, InvalidSecretError
from fundline_core.keys import from_secret
from fundline_core.wallet_store import WalletRecord, utc_now_iso

BACKUP_KIND = "fundline-backup"
BACKUP_VERSION = 1
KDF_ITERATIONS = 600_000


def _derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, iterations)


def _aes_gcm_encrypt(key: bytes, data: bytes) -> tuple[bytes, bytes, bytes]:
    """Encrypt *data* with AES-256-GCM. Returns (ciphertext, nonce, tag)."""
    nonce = os.urandom(12)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(data)
    return ciphertext, nonce, tag


def _aes_gcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """Decrypt and verify AES-256-GCM ciphertext. Raises ValueError on tamper."""
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    return cipher.decrypt_and_verify(ciphertext, tag)


def export_backup(record: WalletRecord, passphrase: str,
                  iterations: int = KDF_ITERATIONS) -> dict[str, Any]:
    if record.secret_material is None:
        raise ValueError("Wallet has no secret material to back up")
    if not passphrase:
        raise ValueError("A passphrase is required for an encrypted backup")
    salt = os.urandom(16)
    key = _derive_key(passphrase, salt, iterations)
    ciphertext, nonce, tag = _aes_gcm_encrypt(key, record.secret_material)
    return {
        "version": BACKUP_VERSION,
        "kind": BACKUP_KIND,
        "publicIdentifier": record.public_identifier,
        "network": record.network,
        "createdAt": record.created_at,
        "ciphertext": ciphertext.hex(),
        "nonce": nonce.hex(),
        "tag": tag.hex(),
        "salt": salt.hex(),
        "kdf": "pbkdf2-hmac-sha256",
        "kdf_iterations": iterations,
    }


def is_encrypted_backup(doc: Any) -> bool:
    return isinstance(doc, dict) and doc.get("kind") == BACKUP_KIND


def import_backup(doc: dict[str, Any], passphrase: str) -> WalletRecord:
    """
    Open an encrypted backup.

    A wrong passphrase, tampered ciphertext or a secret that does not match
    the recorded identifier all raise InvalidSecretError.
    """
    if doc.get("version", 0) > BACKUP_VERSION:
        raise InvalidSecretError(f"Unsupported backup version {doc.get('version')}")
    try:
        salt = bytes.fromhex(doc["salt"])
        nonce = bytes.fromhex(doc["nonce"])
        tag = bytes.fromhex(doc["tag"])
        ciphertext = bytes.fromhex(doc["ciphertext"])
        iterations = int(doc.get("kdf_iterations", KDF_ITERATIONS))
        identifier = doc["publicIdentifier"]
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidSecretError("Backup file is missing or has malformed fields") from exc

    key = _derive_key(passphrase, salt, iterations)
    try:
        secret = _aes_gcm_decrypt(key, nonce, ciphertext, tag)
    except ValueError as exc:
        raise InvalidSecretError("Wrong passphrase or corrupted backup") from exc

    keypair = from_secret(secret)
    if keypair.public_identifier != identifier:
        raise InvalidSecretError("Backup secret does not match its public identifier")
    return WalletRecord(
        public_identifier=identifier,
        secret_material=keypair.secret,
        network=doc.get("network", ""),
        created_at=doc.get("createdAt") or utc_now_iso(),
    )


def write_backup_file(path: str | Path, record: WalletRecord, passphrase: str,
                      iterations: int = KDF_ITERATIONS) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    doc = export_backup(record, passphrase, iterations)
    target.write_text(json.dumps(doc, indent=2), encoding="utf-8")
    os.chmod(target, 0o600)
    return target


def read_backup_file(path: str | Path, passphrase: str | None = None) -> WalletRecord:
    """Load an encrypted backup or a plain wallet document from *path*."""
    try:
        doc = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise InvalidSecretError(f"Backup file not found: {path}") from exc
    except ValueError as exc:
        raise InvalidSecretError(f"Backup file is not valid JSON: {path}") from exc

    if is_encrypted_backup(doc):
        if passphrase is None:
            raise InvalidSecretError("Backup is encrypted; a passphrase is required")
        return import_backup(doc, passphrase)

    try:
        record = WalletRecord.from_document(doc)
    except CorruptPersistedState as exc:
        raise InvalidSecretError(f"Wallet file rejected: {exc}") from exc
    if record.secret_material is None:
        raise InvalidSecretError("Wallet file holds no secret material")
    return record
