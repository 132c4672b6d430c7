"""
Key generation for Fundline accounts.

A key pair is an Ed25519 signing key:
  - ``seed``        32-byte private seed
  - ``public_key``  32-byte encoded public point
  - ``secret``      64-byte ``seed || public_key`` (the layout wallets export)
  - ``public_identifier`` base58 of the public key (the account address)

Restoring accepts either the 32-byte seed or the 64-byte secret, as raw
bytes, a list of ints (the persisted form) or a base58 string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import base58
from ecdsa import SigningKey
from ecdsa.curves import Ed25519

from fundline_core.errors import EntropyFailure, InvalidSecretError

SEED_LENGTH = 32
SECRET_LENGTH = 64


@dataclass(frozen=True)
class KeyPair:
    public_key: bytes
    seed: bytes = field(repr=False)

    @property
    def public_identifier(self) -> str:
        return encode_identifier(self.public_key)

    @property
    def secret(self) -> bytes:
        return self.seed + self.public_key

    def __repr__(self) -> str:
        return f"KeyPair({self.public_identifier})"


def encode_identifier(public_key: bytes) -> str:
    return base58.b58encode(public_key).decode("ascii")


def is_valid_identifier(identifier: str) -> bool:
    """True if *identifier* is base58 for a 32-byte public key."""
    if not isinstance(identifier, str) or not identifier:
        return False
    try:
        raw = base58.b58decode(identifier)
    except ValueError:
        return False
    return len(raw) == SEED_LENGTH


def _public_from_seed(seed: bytes) -> bytes:
    sk = SigningKey.from_string(seed, curve=Ed25519)
    return sk.get_verifying_key().to_string()


def generate() -> KeyPair:
    """Generate a brand-new key pair from OS entropy."""
    try:
        sk = SigningKey.generate(curve=Ed25519)
    except (OSError, NotImplementedError) as exc:
        raise EntropyFailure(f"entropy source unavailable: {exc}") from exc
    seed = sk.to_string()
    return KeyPair(public_key=sk.get_verifying_key().to_string(), seed=seed)


def _coerce_secret(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        text = data.strip()
        if not text:
            raise InvalidSecretError("secret is empty")
        try:
            return base58.b58decode(text)
        except ValueError as exc:
            raise InvalidSecretError("secret is not valid base58") from exc
    if isinstance(data, (list, tuple)):
        if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255
                   for b in data):
            raise InvalidSecretError("secret list must contain byte values 0-255")
        return bytes(data)
    raise InvalidSecretError(f"unsupported secret type: {type(data).__name__}")


def from_secret(data: Any) -> KeyPair:
    """
    Rebuild a key pair from secret material.

    Raises InvalidSecretError on wrong length, wrong encoding, or a 64-byte
    secret whose public half does not match the seed.
    """
    raw = _coerce_secret(data)
    if len(raw) == SEED_LENGTH:
        seed = raw
        embedded = None
    elif len(raw) == SECRET_LENGTH:
        seed, embedded = raw[:SEED_LENGTH], raw[SEED_LENGTH:]
    else:
        raise InvalidSecretError(
            f"secret must be {SEED_LENGTH} or {SECRET_LENGTH} bytes, got {len(raw)}"
        )

    try:
        public_key = _public_from_seed(seed)
    except Exception as exc:  # ecdsa raises a mix of types on bad input
        raise InvalidSecretError("secret is not a valid Ed25519 seed") from exc

    if embedded is not None and embedded != public_key:
        raise InvalidSecretError("public half of secret does not match its seed")
    return KeyPair(public_key=public_key, seed=seed)


def derive_public(secret: Any) -> str:
    """Public identifier derived from any accepted secret form."""
    return from_secret(secret).public_identifier
