"""
CLI example to sweep the story library, moving leftover provider links into durable storage.

Usage:
    python scripts/migrate_story_assets.py --limit 20
    python scripts/migrate_story_assets.py --story-id 3f2c... --repair
    python scripts/migrate_story_assets.py --all
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyloom import AssetMigrationService, RepairEngine, Settings
from storyloom.pipeline import CallbackObserver


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate or repair story assets in the library.")
    parser.add_argument(
        "--config",
        default=None,
        help="Optional settings YAML overlaid on STORYLOOM_* environment variables.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of most recent stories included in the sweep.",
    )
    parser.add_argument(
        "--story-id",
        default=None,
        help="Repair every asset of a single story instead of sweeping the library.",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Finalize every story in the library instead of only the most recent ones.",
    )
    parser.add_argument(
        "--repair",
        action="store_true",
        help="With --story-id, also probe durable URLs and replace unreachable ones.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (DEBUG, INFO, WARNING...).",
    )
    return parser.parse_args()


async def sweep(migration: AssetMigrationService, limit: int) -> int:
    changed = await migration.sweep_library(limit, force=True)
    tqdm.write(f"Sweep updated {changed} asset reference(s).")
    for pending in migration.drain_pending():
        tqdm.write(f"  still pending: {pending.context.story_id} {pending.context.field} ({pending.reason})")
    return 0


async def repair_story(migration: AssetMigrationService, story_id: str) -> int:
    store = migration.store
    record = store.get_story(story_id) if store is not None else None
    if record is None:
        tqdm.write(f"Story {story_id} was not found.")
        return 1

    urls = [url for _, url in record.asset_locations()]
    progress = tqdm(total=len(urls), desc="Checked assets", unit="asset")

    def _fixed(original: str, fixed: str) -> None:
        progress.write(f"  {original[:60]} -> {fixed[:60]}")

    engine = RepairEngine(migration, observer=CallbackObserver(on_asset_fixed=_fixed))
    try:
        report = await engine.check(urls, story_id=story_id)
    finally:
        progress.update(len(urls))
        progress.close()

    tqdm.write(
        f"{report.total} asset(s): {report.accessible} accessible, "
        f"{report.fixed} fixed, {report.failed} replaced by placeholders."
    )
    return 0


async def finalize_all(migration: AssetMigrationService) -> int:
    store = migration.store
    if store is None:
        tqdm.write("No story store is configured.")
        return 1

    story_ids = list(store.iter_story_ids())
    published = 0
    for story_id in tqdm(story_ids, desc="Finalized stories", unit="story"):
        record = store.get_story(story_id)
        if record is None:
            continue
        record = await migration.finalize_record(record)
        published += int(record.published)

    tqdm.write(f"{published}/{len(story_ids)} stories published.")
    for pending in migration.drain_pending():
        tqdm.write(f"  still pending: {pending.context.story_id} {pending.context.field} ({pending.reason})")
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = Settings.from_file(args.config) if args.config else Settings.from_env()
    migration = AssetMigrationService.from_settings(settings)
    try:
        if args.all:
            return await finalize_all(migration)
        if args.story_id and args.repair:
            return await repair_story(migration, args.story_id)
        if args.story_id:
            store = migration.store
            record = store.get_story(args.story_id) if store is not None else None
            if record is None:
                tqdm.write(f"Story {args.story_id} was not found.")
                return 1
            await migration.finalize_record(record)
            tqdm.write(f"Story {record.id} published={record.published}.")
            return 0
        return await sweep(migration, args.limit)
    finally:
        if migration.store is not None:
            migration.store.close()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
