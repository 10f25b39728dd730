#!/usr/bin/env python
"""
Price and stock update - runs the reconciliation pass over the catalog
snapshot and writes the result back.

Usage:
    python scripts/run_sync.py [--workers N] [--dry-run]
"""
import argparse
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from catalog_pricing.api.state import AppState
from catalog_pricing.config import get_settings, setup_logging


def main():
    parser = argparse.ArgumentParser(description="Reconcile products with their supply items")
    parser.add_argument('--workers', type=int, default=None, help="Worker threads (default from settings)")
    parser.add_argument('--dry-run', action='store_true', help="Do not write the catalog back")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level, log_file=settings.sync_log_file)

    print("=" * 60)
    print("PRICE AND STOCK UPDATE")
    print("=" * 60)
    print()

    if not settings.data_dir.exists():
        print(f"❌ Data directory not found: {settings.data_dir}")
        sys.exit(1)

    print(f"[1/2] Reconciling catalog in {settings.data_dir}...")
    state = AppState.build(settings)
    summary = state.sync_engine.reconcile(workers=args.workers or settings.sync_workers)

    print()
    if args.dry_run:
        print("[2/2] Dry run, catalog not written")
    else:
        print("[2/2] Writing catalog...")
        state.store.dump_csv_dir(settings.data_dir)

    print()
    print("=" * 60)
    print("✅ UPDATE COMPLETE" if summary.failed == 0 else "⚠️  UPDATE COMPLETE WITH FAILURES")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Processed: {summary.processed}")
    print(f"  Updated:   {summary.updated}")
    print(f"  Unchanged: {summary.unchanged}")
    print(f"  Switched:  {summary.switched}")
    print(f"  Disabled:  {summary.disabled}")
    print(f"  Skipped:   {summary.skipped}")
    print(f"  Failed:    {summary.failed}")
    for error in summary.errors:
        print(f"  ERROR: {error['product']}: {error['message']}")


if __name__ == "__main__":
    main()
