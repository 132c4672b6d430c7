"""
TOML-based configuration for Fundline.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from fundline_core.config import load_config
    cfg = load_config("fundline.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


DEFAULT_ENDPOINTS = [
    "https://api.devnet.solana.com",
    "https://rpc.ankr.com/solana_devnet",
    "https://devnet.helius-rpc.com",
]


@dataclass
class NetworkConfig:
    """Target network and its ranked RPC endpoints (order = priority)."""
    name: str = "devnet"
    endpoints: list[str] = field(default_factory=lambda: list(DEFAULT_ENDPOINTS))
    commitment: str = "confirmed"     # "confirmed" or "finalized"


@dataclass
class PoolConfig:
    """Endpoint liveness probing and cooldown."""
    probe_timeout: float = 3.0
    failure_ceiling: int = 2          # failures above this trigger cooldown
    cooldown_base: float = 5.0        # seconds
    cooldown_cap: int = 6             # exponent cap: base * 2**min(failures, cap)
    max_cooldown: float = 300.0


@dataclass
class FundingConfig:
    """Funding request retry policy."""
    default_amount: float = 1.0
    max_request_amount: float = 5.0
    max_attempts: int = 3
    backoff_base: float = 1.0         # backoff(n) = min(max_backoff, base * n)
    max_backoff: float = 5.0
    request_timeout: float = 10.0


@dataclass
class ConfirmationConfig:
    """Transaction confirmation polling."""
    poll_interval: float = 0.5
    timeout: float = 30.0
    max_poll_errors: int = 5


@dataclass
class WalletConfig:
    """Local wallet persistence.

    ``backend`` is ``"file"`` (JSON document at ``path``) or ``"sqlite"``
    (single-row table in the database at ``path``).  When
    ``persist_secret`` is False only the public part of the wallet is
    written to disk.
    """
    backend: str = "file"
    path: str = "data/wallet.json"
    persist_secret: bool = True


@dataclass
class ServicesConfig:
    """External metadata and upload/mint services."""
    metadata_url: str = "http://localhost:3000"
    upload_url: str = "http://localhost:3000"
    timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class FundlineConfig:
    """Top-level configuration container."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    funding: FundingConfig = field(default_factory=FundingConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    services: ServicesConfig = field(default_factory=ServicesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: str | None = None) -> FundlineConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        FUNDLINE_NETWORK        -> network.name
        FUNDLINE_ENDPOINTS      -> network.endpoints   (comma-separated)
        FUNDLINE_FUND_AMOUNT    -> funding.default_amount
        FUNDLINE_MAX_ATTEMPTS   -> funding.max_attempts
        FUNDLINE_WALLET_PATH    -> wallet.path
        FUNDLINE_WALLET_BACKEND -> wallet.backend
        FUNDLINE_METADATA_URL   -> services.metadata_url
        FUNDLINE_UPLOAD_URL     -> services.upload_url
        FUNDLINE_LOG_LEVEL      -> logging.level
        FUNDLINE_LOG_FMT        -> logging.format
    """
    cfg = FundlineConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("network", cfg.network),
                ("pool", cfg.pool),
                ("funding", cfg.funding),
                ("confirmation", cfg.confirmation),
                ("wallet", cfg.wallet),
                ("services", cfg.services),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("FUNDLINE_NETWORK"):
        cfg.network.name = v
    if v := os.environ.get("FUNDLINE_ENDPOINTS"):
        cfg.network.endpoints = split_list(v)
    if v := os.environ.get("FUNDLINE_FUND_AMOUNT"):
        cfg.funding.default_amount = float(v)
    if v := os.environ.get("FUNDLINE_MAX_ATTEMPTS"):
        cfg.funding.max_attempts = int(v)
    if v := os.environ.get("FUNDLINE_WALLET_PATH"):
        cfg.wallet.path = v
    if v := os.environ.get("FUNDLINE_WALLET_BACKEND"):
        cfg.wallet.backend = v.lower()
    if v := os.environ.get("FUNDLINE_METADATA_URL"):
        cfg.services.metadata_url = v
    if v := os.environ.get("FUNDLINE_UPLOAD_URL"):
        cfg.services.upload_url = v
    if v := os.environ.get("FUNDLINE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("FUNDLINE_LOG_FMT"):
        cfg.logging.format = v

    return cfg
