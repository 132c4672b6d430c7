"""
Fundline - account provisioning and funding for devnet-style ledgers.

Key features:
- Ed25519 key generation and secret restore with derivation checks
- Ranked RPC endpoint pool with liveness probing and exponential cooldown
- Funding with failover, linear capped backoff, and confirmation polling
- Single-slot wallet persistence (JSON file or SQLite) and encrypted backups
- Thin clients for the metadata and upload/mint services
"""

__version__ = "0.3.0"
__all__ = [
    "account",
    "backup",
    "config",
    "confirmation",
    "endpoints",
    "errors",
    "funding",
    "keys",
    "rpc",
    "services",
    "wallet_store",
]
