#!/usr/bin/env python3
"""
Fundline command-line runner.

Usage:
    python run_provision.py provision --amount 0.5
    python run_provision.py restore --secret <base58>
    python run_provision.py restore --file backup.json --passphrase hunter2
    python run_provision.py balance
    python run_provision.py show
    python run_provision.py backup backup.json --passphrase hunter2
    python run_provision.py disconnect
    python run_provision.py endpoints
    python run_provision.py --endpoints http://a:8899,http://b:8899 balance
    python run_provision.py chain [--id <identifier>]
    python run_provision.py upload image.png [--extra notes.txt] [--prev <identifier>]

Configuration comes from --config (TOML) plus FUNDLINE_* environment
variables; see fundline_core/config.py.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fundline_core.account import AccountFacade  # noqa: E402
from fundline_core.config import FundlineConfig, load_config, split_list  # noqa: E402
from fundline_core.errors import FundlineError, InvalidSecretError, describe  # noqa: E402
from fundline_core.logging_config import setup_logging  # noqa: E402
from fundline_core.services import MetadataClient, UploadClient  # noqa: E402

logger = logging.getLogger("fundline")


def _emit(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


def _public_view(record) -> dict:
    return {
        "publicIdentifier": record.public_identifier,
        "network": record.network,
        "createdAt": record.created_at,
        "balance": record.balance,
    }


# ===================================================================
#  Commands
# ===================================================================

async def cmd_provision(facade: AccountFacade, args) -> int:
    result = await facade.provision_and_fund(args.amount)
    _emit({
        "wallet": _public_view(result.wallet),
        "funded": result.funded,
        "message": result.message,
        "attempts": [a.to_dict() for a in result.attempts],
    })
    return 0


async def cmd_restore(facade: AccountFacade, args) -> int:
    source = Path(args.file) if args.file else args.secret
    record = await facade.restore(source, passphrase=args.passphrase)
    _emit(_public_view(record))
    return 0


async def cmd_balance(facade: AccountFacade, args) -> int:
    if facade.load_active() is None:
        print("No wallet stored. Run `provision` or `restore` first.", file=sys.stderr)
        return 1
    reading = await facade.get_balance()
    out = {"publicIdentifier": reading.wallet.public_identifier, "balance": reading.balance}
    if reading.stale:
        out["stale"] = True
        out["reason"] = describe(reading.error)
    _emit(out)
    return 0


async def cmd_show(facade: AccountFacade, args) -> int:
    record = facade.load_active()
    if record is None:
        print("No wallet stored.", file=sys.stderr)
        return 1
    _emit(_public_view(record))
    return 0


async def cmd_backup(facade: AccountFacade, args) -> int:
    if facade.load_active() is None:
        print("No wallet stored.", file=sys.stderr)
        return 1
    path = facade.export_backup(args.path, args.passphrase)
    print(f"Backup written to {path}")
    return 0


async def cmd_disconnect(facade: AccountFacade, args) -> int:
    facade.disconnect()
    print("Wallet cleared.")
    return 0


async def cmd_endpoints(facade: AccountFacade, args) -> int:
    with contextlib.suppress(FundlineError):
        await facade.pool.select_healthy()
    _emit(facade.pool.snapshot())
    return 0


async def cmd_chain(facade: AccountFacade, args, cfg: FundlineConfig) -> int:
    identifier = args.id
    if identifier is None:
        record = facade.load_active()
        if record is None:
            print("No identifier given and no wallet stored.", file=sys.stderr)
            return 1
        identifier = record.public_identifier
    async with MetadataClient(cfg.services.metadata_url, cfg.services.timeout) as client:
        chain = await client.fetch_chain(identifier)
    _emit(chain)
    return 0


async def cmd_upload(facade: AccountFacade, args, cfg: FundlineConfig) -> int:
    image = Path(args.image)
    extra = None
    if args.extra:
        extra_path = Path(args.extra)
        extra = (extra_path.name, extra_path.read_bytes())
    async with UploadClient(cfg.services.upload_url, cfg.services.timeout) as client:
        result = await client.upload_and_mint(
            image.read_bytes(), filename=image.name, prev=args.prev, extra=extra,
        )
    _emit({"mint": result.mint, "explorerLink": result.explorer_link})
    return 0


# ===================================================================
#  Entry point
# ===================================================================

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Fundline account provisioning")
    p.add_argument("--config", default=os.environ.get("FUNDLINE_CONFIG"),
                   help="Path to a TOML config file")
    p.add_argument("--endpoints", default=None,
                   help="Comma-separated RPC endpoints, highest priority first")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("provision", help="Create and fund a new account")
    sp.add_argument("--amount", type=float, default=None)

    sp = sub.add_parser("restore", help="Restore an account from a secret or backup")
    group = sp.add_mutually_exclusive_group(required=True)
    group.add_argument("--secret", help="base58 secret key")
    group.add_argument("--file", help="backup or wallet file")
    sp.add_argument("--passphrase", default=None)

    sub.add_parser("balance", help="Refresh the stored account's balance")
    sub.add_parser("show", help="Show the stored account")

    sp = sub.add_parser("backup", help="Write an encrypted backup of the stored account")
    sp.add_argument("path")
    sp.add_argument("--passphrase", required=True)

    sub.add_parser("disconnect", help="Forget the stored account")
    sub.add_parser("endpoints", help="Probe endpoints and show their health")

    sp = sub.add_parser("chain", help="Fetch the record chain for an identifier")
    sp.add_argument("--id", default=None)

    sp = sub.add_parser("upload", help="Upload an asset and mint a record")
    sp.add_argument("image")
    sp.add_argument("--extra", default=None)
    sp.add_argument("--prev", default=None)
    return p.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.endpoints is not None:
        cfg.network.endpoints = split_list(args.endpoints)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    handlers = {
        "provision": cmd_provision,
        "restore": cmd_restore,
        "balance": cmd_balance,
        "show": cmd_show,
        "backup": cmd_backup,
        "disconnect": cmd_disconnect,
        "endpoints": cmd_endpoints,
    }
    try:
        facade = AccountFacade.from_config(cfg)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    async with facade:
        try:
            if args.command == "chain":
                return await cmd_chain(facade, args, cfg)
            if args.command == "upload":
                return await cmd_upload(facade, args, cfg)
            return await handlers[args.command](facade, args)
        except InvalidSecretError as exc:
            print(f"Invalid secret: {exc}", file=sys.stderr)
            return 2
        except FundlineError as exc:
            print(f"{describe(exc.kind)}: {exc}", file=sys.stderr)
            return 1
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    main_sync()
