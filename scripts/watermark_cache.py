#!/usr/bin/env python3
"""
Watermark Cache Maintenance

Offline management of the watermark artifact cache.

Usage:
    # Show cache statistics and codec support:
    python scripts/watermark_cache.py stats

    # Remove every cached artifact:
    python scripts/watermark_cache.py clear

    # Remove artifacts older than 14 days:
    python scripts/watermark_cache.py cleanup --days 14

    # Re-render all product images with the settings in settings.json:
    python scripts/watermark_cache.py regenerate --settings settings.json \
        --max-files 1000 --batch-size 50

    # Watermark a single image and report the outcome:
    python scripts/watermark_cache.py test products/a.jpg --settings settings.json

Configuration comes from IMAGEGUARD_* environment variables or .env.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from imageguard.bootstrap import ImageGuard
from imageguard.config import ImageGuardConfig
from imageguard.settings import InMemoryConfigStore


logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
        ]
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)


def load_settings(path: str = None) -> InMemoryConfigStore:
    """Settings store seeded from a JSON object of setting key/values."""
    if not path:
        return InMemoryConfigStore()
    with open(path, "r", encoding="utf-8") as f:
        values = json.load(f)
    if not isinstance(values, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return InMemoryConfigStore(initial=values)


def print_header(title: str):
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")


def show_stats(guard: ImageGuard) -> int:
    stats = guard.cache_store.stats()
    health = guard.service.health_status()

    print_header("WATERMARK CACHE STATISTICS")
    print(f"Cache directory:  {stats['cache_dir']}")
    print(f"Artifacts:        {stats['count']}")
    print(f"Total size:       {stats['total_bytes'] / 1024 / 1024:.2f} MB")
    print(f"Epoch:            {stats['epoch']}")
    print(f"Health:           {health['status']}")
    print("\nCodec support:")
    for fmt, supported in health["codecs"]["formats"].items():
        print(f"  {'✓' if supported else '✗'} {fmt}")
    return 0


def clear_cache(guard: ImageGuard) -> int:
    count = guard.service.clear_cache()
    print(f"✓ Cleared {count} cached artifacts")
    return 0


def cleanup_cache(guard: ImageGuard, days: int) -> int:
    count = guard.service.cleanup_old_cache(days)
    print(f"✓ Removed {count} artifacts older than {days} days")
    return 0


def regenerate(guard: ImageGuard, max_files: int, batch_size: int) -> int:
    if not guard.service.is_enabled():
        print("ERROR: Watermarking is disabled or has nothing to draw; pass --settings")
        return 1

    paths = guard.cache_store.list_sources(guard.config.allowed_path_prefixes, limit=max_files)
    if not paths:
        print("No source images found")
        return 0

    print_header("BULK WATERMARK REGENERATION")
    print(f"Images:      {len(paths)}")
    print(f"Batch size:  {batch_size}")

    guard.scheduler.batch_size = batch_size
    batch = guard.service.regenerate_all(paths)

    while not batch.is_finished:
        print(f"  {batch.progress_percent:5.1f}%  ({batch.processed}/{batch.total})", end="\r")
        time.sleep(0.5)

    print(f"\n✓ Batch {batch.batch_id} {batch.status.value}")
    print(f"  Succeeded: {batch.succeeded}")
    print(f"  Failed:    {batch.failed}")
    for error in batch.errors[:10]:
        print(f"  ⚠ {error['source_path']}: {error['error']}")

    return 0 if batch.failed == 0 else 1


def test_image(guard: ImageGuard, image_path: str) -> int:
    allowed, reason = guard.gateway.policy.check_path(image_path)
    if not allowed:
        print(f"ERROR: {reason}")
        return 1

    report = guard.service.test_watermark(image_path)
    print(json.dumps(report, indent=2))
    return 0 if report["success"] else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Manage the watermark artifact cache"
    )
    parser.add_argument(
        "action",
        choices=["stats", "clear", "cleanup", "regenerate", "test"],
        help="Action to perform"
    )
    parser.add_argument(
        "image_path",
        nargs="?",
        help="Image to watermark (test action only)"
    )
    parser.add_argument(
        "--settings",
        help="JSON file with watermark settings (regenerate/test)"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=7,
        help="Age threshold for cleanup (default: 7)"
    )
    parser.add_argument(
        "--max-files",
        type=int,
        default=1000,
        help="Maximum number of images to regenerate (default: 1000)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=50,
        help="Images per regeneration chunk (default: 50)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)

    if args.action == "test" and not args.image_path:
        parser.error("test requires an image path")

    guard = ImageGuard.build(ImageGuardConfig(), load_settings(args.settings))
    guard.start(periodic_cleanup=False)
    try:
        if args.action == "stats":
            return show_stats(guard)
        if args.action == "clear":
            return clear_cache(guard)
        if args.action == "cleanup":
            return cleanup_cache(guard, args.days)
        if args.action == "regenerate":
            return regenerate(guard, args.max_files, args.batch_size)
        return test_image(guard, args.image_path)
    finally:
        guard.shutdown()


if __name__ == "__main__":
    sys.exit(main())
