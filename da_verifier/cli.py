"""
CLI for the Lens DA verifier node

Usage:
    da-verifier                              # Run the verifier node
    da-verifier --resync                     # Run the node from the first transaction
    da-verifier --tx-id <TX_ID>              # Check one DA transaction
    da-verifier --tx-id <TX_ID> --client     # Check one DA transaction with no local store
    da-verifier --stats                      # Show verification statistics
    da-verifier --history                    # Show verification history
    da-verifier --failed                     # Show terminal failures
    da-verifier --trusting                   # Stream publications without verifying them
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()


def _print_verdict(tx_id: str, verdict):
    print(f"\n{'=' * 60}")
    print("VERIFICATION RESULT")
    print("=" * 60)
    print(f"Tx: {tx_id}")
    if verdict.is_success:
        print("Result: OK")
        print(f"Publication: {verdict.publication.publication_id}")
    else:
        print("Result: FAILED")
        print(f"Reason: {verdict.error.value}")
        if verdict.context is not None:
            print(f"Publication: {verdict.context.publication_id}")
    print("=" * 60)


async def _check_single(tx_id: str, chain_config, options, use_client: bool):
    from .bundlr import BundlrClient
    from .checker import DAProofChecker
    from .client import check_da_proof
    from .evm import EthereumClient
    from .node import build_node_context
    from .store import VerificationStore

    if use_client:
        return await check_da_proof(tx_id, chain_config, options)

    # Settled verdicts are written to the store by the checker itself
    async with BundlrClient() as bundlr:
        context = build_node_context(
            chain_config, VerificationStore(), bundlr, EthereumClient(chain_config.node_url)
        )
        return await DAProofChecker(context).check_da_proof(tx_id, options)


async def _run_trusting(environment, deployment):
    from .indexing import start_da_trusting_indexing

    def log_publication(result):
        publication = result.data_availability_result or {}
        print(f"{result.proof_tx_id} | {publication.get('type')} | {publication.get('publicationId')}")

    await start_da_trusting_indexing(environment, log_publication, deployment)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Lens DA verifier node - Independent checker for data availability publications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  da-verifier                                 Run the verifier node
  da-verifier --environment AMOY --resync     Re-check Amoy from the first transaction
  da-verifier --tx-id ar://<id>               Check a specific DA transaction
  da-verifier --tx-id <id> --client           Check it without the local store
  da-verifier --stats                         Show verification statistics
  da-verifier --history                       Show verification history
  da-verifier --failed                        Show terminal failures
  da-verifier --trusting                      Stream publications without verifying them
        """,
    )
    parser.add_argument("--tx-id", metavar="TX_ID", help="Check a specific DA transaction")
    parser.add_argument("--client", action="store_true", help="Check with the uncached client gateway")
    parser.add_argument("--stats", action="store_true", help="Show verification statistics")
    parser.add_argument("--history", action="store_true", help="Show verification history")
    parser.add_argument("--failed", action="store_true", help="Show terminal failures")
    parser.add_argument("--node", metavar="URL", help="Chain node JSON-RPC URL (env: ETHEREUM_NODE_URL)")
    parser.add_argument("--environment", help="POLYGON, MUMBAI or AMOY (env: ENVIRONMENT)")
    parser.add_argument("--deployment", help="PRODUCTION, STAGING or LOCAL (env: DEPLOYMENT)")
    parser.add_argument("--concurrency", type=int, help="Maximum checks in flight (env: CONCURRENCY)")
    parser.add_argument("--resync", action="store_true", help="Ignore the saved cursor and start over")
    parser.add_argument("--no-verify-pointer", action="store_true", help="Skip pointed-at publication checks")
    parser.add_argument("--cache-blocks", action="store_true", help="Pre-cache each new chain head block")
    parser.add_argument("--trusting", action="store_true", help="Stream publications without verifying them")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    from .checker import CheckOptions
    from .environment import (
        DEFAULT_DEPLOYMENT,
        DEFAULT_ENVIRONMENT,
        ChainConfig,
        resolve_deployment,
        resolve_environment,
    )
    from .store import VerificationStore

    # --stats: Show verification statistics
    if args.stats:
        print("=" * 60)
        print("Verification Statistics")
        print("=" * 60)

        store = VerificationStore()
        stats = store.get_stats()

        print(f"Total verified:  {stats['total_verified']}")
        print(f"Passed:          {stats['passed']}")
        print(f"Failed:          {stats['failed']}")
        print(f"Pass rate:       {stats['pass_rate']:.1%}")
        if stats["failure_reasons"]:
            print("\nFailure reasons:")
            for reason, count in sorted(stats["failure_reasons"].items(), key=lambda r: -r[1]):
                print(f"  {reason:45} {count}")
        print("=" * 60)

        history = store.get_verification_history(limit=10)
        if history:
            print("\nRecent Verifications:")
            for h in history:
                status = "OK" if h["success"] else h["failure_reason"]
                print(f"  {h['verified_at'][:19]} | {status:30} | {h['tx_id']}")
        return

    # --history: Show verification history
    if args.history:
        store = VerificationStore()
        history = store.get_verification_history(limit=50)

        print("=" * 80)
        print("Verification History")
        print("=" * 80)

        for h in history:
            status = "OK" if h["success"] else f"FAILED - {h['failure_reason']}"
            print(f"{h['verified_at'][:19]} | {h['tx_id']} | {status}")
            if h["publication_id"]:
                print(f"  Publication: {h['publication_id']}")
        return

    # --failed: Show terminal failures
    if args.failed:
        store = VerificationStore()
        failed = store.get_failed_transactions()

        print("=" * 80)
        print(f"Failed Transactions ({len(failed)})")
        print("=" * 80)

        for f in failed:
            print(f"{f['txId']} | {f['reason']} | submitter: {f.get('submitter') or 'unknown'}")
        return

    try:
        environment = resolve_environment(
            args.environment or os.getenv("ENVIRONMENT", DEFAULT_ENVIRONMENT.value)
        )
        deployment = resolve_deployment(
            args.deployment or os.getenv("DEPLOYMENT", DEFAULT_DEPLOYMENT.value)
        )
    except KeyError as e:
        print(f"[!] {e}")
        sys.exit(1)

    # --trusting: Stream publications with no chain node and no checks
    if args.trusting:
        print("=" * 60)
        print("Lens DA Trusting Indexer")
        print("=" * 60)
        print(f"Environment: {environment.value}")
        print(f"Deployment: {deployment.value}")
        print("[!] Publications are NOT verified in this mode")
        print("=" * 60)

        try:
            asyncio.run(_run_trusting(environment, deployment))
        except KeyboardInterrupt:
            print("\n[OK] Stopped")
        return

    node_url = args.node or os.getenv("ETHEREUM_NODE_URL")
    if not node_url:
        print("[!] No chain node configured. Pass --node or set ETHEREUM_NODE_URL.")
        sys.exit(1)

    chain_config = ChainConfig(environment=environment, node_url=node_url, deployment=deployment)

    options = CheckOptions(verify_pointer=not args.no_verify_pointer)

    # --tx-id: Check a specific transaction
    if args.tx_id:
        print("=" * 60)
        print("Lens DA Verifier")
        print("=" * 60)
        print(f"Mode: Single Check ({'client' if args.client else 'node store'})")
        print(f"Environment: {chain_config.environment.value}")
        print(f"Deployment: {chain_config.deployment.value}")
        print(f"Tx: {args.tx_id}")
        print("=" * 60)

        print("\n[...] Checking transaction...")
        verdict = asyncio.run(_check_single(args.tx_id, chain_config, options, args.client))
        _print_verdict(args.tx_id, verdict)
        sys.exit(0 if verdict.is_success else 2)

    # Default: Run the verifier node
    from .node import start_verifier_node

    concurrency = args.concurrency or int(os.getenv("CONCURRENCY", "100"))

    print("=" * 60)
    print("Lens DA Verifier Node")
    print("=" * 60)
    print("Mode: Continuous Verification")
    print(f"Environment: {chain_config.environment.value}")
    print(f"Deployment: {chain_config.deployment.value}")
    print(f"Concurrency: {concurrency}")
    print(f"Resync: {args.resync}")
    print(f"Verify pointers: {options.verify_pointer}")
    print(f"Cache blocks: {args.cache_blocks}")
    print("=" * 60)

    try:
        asyncio.run(start_verifier_node(
            chain_config,
            options=options,
            concurrency=concurrency,
            resync=args.resync,
            cache_blocks=args.cache_blocks,
        ))
    except KeyboardInterrupt:
        print("\n[OK] Stopped")


if __name__ == "__main__":
    main()
