#!/usr/bin/env python3
"""
IdentityChain Management CLI

Commands for operating a chain store:
- generate-keypair: Generate an Ed25519 root keypair
- list-chains: List stored chains with their heights
- verify-chain: Verify one owner's chain
- verify-all: Verify every stored chain

Usage:
    identitychain-manage <command> [options]

Examples:
    identitychain-manage generate-keypair
    identitychain-manage --store ./data/chains.json verify-chain user:alice
    identitychain-manage verify-all
"""

import argparse
import sys

from .core import ChainEngine, IdentityService, Signer
from .db import ChainStoreError, NotFoundError, StoreConfig, create_chain_store


def _open_store(args):
    config = StoreConfig.from_env()
    if args.store:
        config.path = args.store
    return create_chain_store(config)


def cmd_generate_keypair(args):
    """Generate a new root keypair."""
    private_key, public_key = Signer.generate_keypair()

    print("[OK] Keypair generated")
    print(f"\n  Public key (register as root_public_key):")
    print(f"  {public_key}")
    print(f"\n  Private key (KEEP SECRET!):")
    print(f"  {private_key}")
    return 0


def cmd_list_chains(args):
    """List every chain in the store."""
    store = _open_store(args)
    chains = sorted(store.list(), key=lambda c: c.owner_id)

    if not chains:
        print("No chains stored.")
        return 0

    print(f"Found {len(chains)} chains\n")
    for chain in chains:
        head = chain.head_hash[:16] + "..." if chain.blocks else "-"
        print(f"  {chain.owner_id}  blocks={chain.height}  head={head}")
    return 0


def cmd_verify_chain(args):
    """Verify the integrity of one owner's chain."""
    store = _open_store(args)

    try:
        chain = store.get(args.owner_id)
    except NotFoundError:
        print(f"Error: no chain for owner {args.owner_id}")
        return 1

    report = ChainEngine.verify(chain)
    if report.valid:
        print(f"[OK] {chain.owner_id}: {report.block_count} blocks verified")
        if chain.blocks:
            print(f"  Chain head: {chain.head_hash[:16]}...")
        return 0

    print(f"[FAIL] {chain.owner_id}: {report.status.value}")
    print(f"  {report.reason}")
    return 1


def cmd_verify_all(args):
    """Verify every chain in the store."""
    service = IdentityService(_open_store(args))
    reports = sorted(service.verify_all(), key=lambda r: r.owner_id)

    print(f"Verifying {len(reports)} chains...\n")
    failures = 0
    for report in reports:
        if report.valid:
            print(f"  [OK]   {report.owner_id} ({report.block_count} blocks)")
        else:
            failures += 1
            print(f"  [FAIL] {report.owner_id}: {report.reason}")

    print()
    if failures:
        print(f"[FAIL] {failures} of {len(reports)} chains failed verification")
        return 1
    print("[OK] All chains verified")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="identitychain-manage",
        description="IdentityChain Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        "--store",
        help="Path to the chain store document (default: IDENTITY_STORE_PATH)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser(
        "generate-keypair",
        help="Generate an Ed25519 root keypair"
    )

    subparsers.add_parser(
        "list-chains",
        help="List stored chains"
    )

    p_verify = subparsers.add_parser(
        "verify-chain",
        help="Verify one owner's chain"
    )
    p_verify.add_argument("owner_id", help="Owner whose chain to verify")

    subparsers.add_parser(
        "verify-all",
        help="Verify every stored chain (exit 1 on any failure)"
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "generate-keypair": cmd_generate_keypair,
        "list-chains": cmd_list_chains,
        "verify-chain": cmd_verify_chain,
        "verify-all": cmd_verify_all,
    }

    try:
        return commands[args.command](args) or 0
    except ChainStoreError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
