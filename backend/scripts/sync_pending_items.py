#!/usr/bin/env python3
"""Sync transactions for every Item flagged by a SYNC_UPDATES_AVAILABLE webhook.

Meant to be run by an external scheduler (cron, a task runner) as the
periodic re-sync sweep.

Usage:
    python -m scripts.sync_pending_items
    python -m scripts.sync_pending_items --item-id <uuid>
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from database import get_session_local
from integrations.plaid_client import PlaidClient
from logging_config import setup_logging
from services.secret_cipher import SecretCipher
from services.transaction_sync_service import TransactionSyncResult, TransactionSyncService


def _print_result(result: TransactionSyncResult) -> None:
    if result.success:
        print(
            f"  {result.item_id}: +{result.added} added, {result.modified} modified, "
            f"{result.removed} removed"
        )
    else:
        print(f"  {result.item_id}: FAILED - {result.error}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Sync transactions for flagged Items.")
    parser.add_argument("--item-id", help="Sync only this Item, flagged or not")
    args = parser.parse_args(argv)

    setup_logging()
    provider = PlaidClient()
    if not provider.is_configured():
        print("Error: Plaid credentials are not configured")
        sys.exit(1)

    service = TransactionSyncService(
        provider,
        SecretCipher(settings.ENCRYPTION_KEY_NAME),
        settings.TRANSACTION_SYNC_MAX_RETRIES,
    )
    db = get_session_local()()
    try:
        if args.item_id:
            results = [service.sync_item(db, args.item_id)]
        else:
            results = service.sync_pending_items(db)
    finally:
        db.close()

    print(f"Synced {len(results)} item(s)")
    for result in results:
        _print_result(result)
    if any(not r.success for r in results):
        sys.exit(2)


if __name__ == "__main__":
    main()
