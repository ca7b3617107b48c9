#!/usr/bin/env python3
"""Remove the background from a batch of images and save transparent PNGs.

Usage:
    python run_clearcut.py photos/                     # every image in a directory
    python run_clearcut.py a.jpg b.png --concurrency 2
    python run_clearcut.py photos/ --output-dir out/ --no-download
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from settings import Settings
from models.events import CollectionEvent
from pipeline.errors import InvalidUploadError
from pipeline.ingest import collect_uploads
from pipeline.orchestrator import BatchOrchestrator

logger = logging.getLogger("run_clearcut")


def _log_event(event: CollectionEvent) -> None:
    if event.action != "status_changed":
        return
    s = event.stats
    logger.info("%s → %s  [%d/%d done, %d failed, %d running]",
                event.item_id, event.status.value, s.completed, s.total, s.failed, s.processing)


async def run(settings: Settings, paths: list[Path], download: bool = True) -> int:
    orchestrator = BatchOrchestrator.from_settings(settings)
    orchestrator.subscribe(_log_event)

    uploads = collect_uploads(paths)
    if not uploads:
        logger.error("No supported images found (png, jpg, jpeg, webp).")
        return 1
    try:
        orchestrator.add_items(uploads)
    except InvalidUploadError as exc:
        logger.error("%s", exc)
        return 1

    stats = await orchestrator.process_batch()

    for item in orchestrator.items:
        if item.error_message:
            logger.warning("  %s: %s", item.name, item.error_message)

    if download and stats.completed:
        await orchestrator.download_all()

    orchestrator.clear_all()
    return 1 if stats.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("paths", nargs="+", type=Path,
                        help="Image files or directories containing images")
    parser.add_argument("--output-dir", type=Path, dest="output_dir",
                        help="Where to save the processed PNGs (default: ./output)")
    parser.add_argument("--concurrency", type=int,
                        help="Number of images processed at the same time (default: 3)")
    parser.add_argument("--no-download", action="store_true", dest="no_download",
                        help="Process only; do not write result files")
    args = parser.parse_args()

    overrides = {}
    if args.output_dir is not None:
        overrides["output_dir"] = args.output_dir
    if args.concurrency is not None:
        overrides["max_concurrency"] = args.concurrency
    settings = Settings(**overrides)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    sys.exit(asyncio.run(run(settings, args.paths, download=not args.no_download)))


if __name__ == "__main__":
    main()
