#!/usr/bin/env python3
"""Remove duplicate prompt images, keeping each prompt's primary, then sweep
storage for objects and rows left behind by interrupted writes.

Needs a service-role key in SUPABASE_KEY since it scans every owner's rows.

Usage:
    python scripts/cleanup_duplicates.py --dry-run   # report only
    python scripts/cleanup_duplicates.py
"""

from __future__ import annotations

import argparse
import sys

from prompt_vault.config import get_settings
from prompt_vault.core.errors import RemoteError
from prompt_vault.core.maintenance import prune_duplicate_images, sweep_orphans
from prompt_vault.db.client import get_supabase_client
from prompt_vault.utils.logging import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune duplicate prompt images and sweep orphans")
    parser.add_argument("--dry-run", action="store_true", help="Report what would be removed")
    parser.add_argument(
        "--bucket",
        default=None,
        help="Storage bucket (default: STORAGE_BUCKET or prompt-images)",
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)
    if not settings.supabase_configured:
        print("SUPABASE_URL and SUPABASE_KEY must be set", file=sys.stderr)
        sys.exit(1)

    bucket = args.bucket or settings.storage_bucket
    print(f"Pruning duplicate images in '{bucket}'{' (dry run)' if args.dry_run else ''} ...")
    try:
        db = get_supabase_client()
        report = prune_duplicate_images(db, bucket, dry_run=args.dry_run)
        sweep = sweep_orphans(db, bucket, dry_run=args.dry_run)
    except RemoteError as e:
        print(f"  FAILED: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"  Prompts checked:    {report.prompts_checked}")
    print(f"  Images removed:     {report.images_removed}")
    print(f"  Primaries promoted: {report.primaries_promoted}")
    print(f"  Objects checked:    {sweep.objects_checked}")
    print(f"  Orphans removed:    {sweep.orphans_removed}")
    print(f"  Dangling rows:      {sweep.dangling_rows_removed}")
    print(f"  Primaries reset:    {sweep.primaries_reset}")
    print("Done.")


if __name__ == "__main__":
    main()
