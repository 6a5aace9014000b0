#!/usr/bin/env python3
"""Sweep expired PDFs out of the quote PDF cache.

Usage: python scripts/cleanup_cache.py [--dry-run] [--hours N]

Prints cache stats before and after, then how many files and MB were freed.
Meant for cron; exits 1 if the sweep itself blows up.
"""
import os
import sys
import argparse
from datetime import timedelta

# Ensure repo root is in path
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, REPO_ROOT)

from qbuilder.core.config import load_config  # noqa: E402
from qbuilder.core.pdf_cache import PdfCache  # noqa: E402


def _fmt(stats) -> str:
    d = stats.to_dict()
    return f"{d['file_count']} files, {d['total_mb']:.2f} MB, oldest={d['oldest_entry'] or '-'}"


def cleanup_expired_cache(cache: PdfCache, dry_run: bool = False) -> dict:
    before = cache.stats()
    print(f"Cache stats before cleanup: {_fmt(before)}")
    if dry_run:
        print("Dry run, nothing removed")
        return {"removed": 0, "freed_bytes": 0}

    removed = cache.sweep_expired()
    after = cache.stats()
    print(f"Cache stats after cleanup:  {_fmt(after)}")

    freed = before.total_bytes - after.total_bytes
    print(f"Cleanup completed: {removed} files removed, {freed / 1024 / 1024:.2f} MB freed")
    return {"removed": removed, "freed_bytes": freed}


def _positive_hours(raw: str) -> float:
    try:
        hours = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}")
    if hours <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return hours


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Sweep expired PDFs out of the quote PDF cache")
    parser.add_argument("--dry-run", action="store_true", help="Report stats without deleting")
    parser.add_argument("--hours", type=_positive_hours, metavar="N",
                        help="Retention window (default: QBUILDER_PDF_CACHE_HOURS or 24)")
    args = parser.parse_args(argv)

    config = load_config()
    hours = args.hours or config.cache_hours
    cache = PdfCache(config.pdf_cache_dir, retention=timedelta(hours=hours))
    print(f"Starting PDF cache cleanup in {config.pdf_cache_dir} (retention {hours}h)")
    try:
        cleanup_expired_cache(cache, dry_run=args.dry_run)
    except Exception as e:
        print(f"Error during cache cleanup: {e}")
        return 1
    print("Cache cleanup finished successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
