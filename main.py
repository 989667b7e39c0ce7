import sys
import os
import argparse
import asyncio
import logging
import signal
from typing import List

# Ensure src is in the python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from src.core.config import CONFIG_PATH, BulkSettings, load_settings
from src.core.constants import ALLOWED_BATCH_SIZES, ERROR_HANDLING_MODES
from src.core.logging_setup import setup_logging
from src.core.models import ResultRecord
from src.core.utils import iter_image_paths, validate_image_file
from src.services.card_database import CardDatabaseService
from src.services.image_host import FreeImageHost
from src.services.inventory import import_inventory_csv, export_results_csv
from src.services.scanner.manager import BulkScanManager
from src.services.scanner.pipeline import CardPipeline, ImageFile

logger = logging.getLogger(__name__)

def load_images(paths: List[str], recursive: bool) -> List[ImageFile]:
    files = []
    for path in paths:
        if not os.path.exists(path):
            logger.warning(f"Path not found: {path}")
            continue
        for image_path in iter_image_paths(path, recursive=recursive):
            image = ImageFile.from_path(image_path)
            try:
                validate_image_file(image.name, image.data)
            except ValueError as e:
                logger.warning(f"Skipping {image_path}: {e}")
                continue
            files.append(image)
    return files

def print_result(result: ResultRecord):
    if result.error:
        print(f"✗ {result.filename}: {result.error}")
    elif result.matched:
        print(f"✓ {result.filename}: {result.matched_name} [{result.match.match_type}, {result.confidence:.0%}]")
    else:
        print(f"? {result.filename}: no match for '{result.card_name}'")

async def run_scan(args) -> int:
    settings = load_settings(args.config)

    bulk_overrides = {
        "max_concurrent": args.max_concurrent,
        "batch_size": args.batch_size,
        "error_handling": args.error_handling,
    }
    bulk = settings.bulk.model_dump()
    bulk.update({k: v for k, v in bulk_overrides.items() if v is not None})
    if args.no_skip_duplicates:
        bulk["skip_duplicates"] = False
    if args.no_retry:
        bulk["auto_retry"] = False
    settings.bulk = BulkSettings.model_validate(bulk)

    if args.engine:
        settings.ocr.engine = args.engine
    if args.strategy:
        settings.ocr.strategy = args.strategy
    if args.no_prices:
        settings.pipeline.fetch_prices = False

    files = load_images(args.paths, args.recursive)
    if not files:
        logger.error("No images found")
        return 1

    db_service = CardDatabaseService()
    database = () if args.no_database else await db_service.load_card_database()
    inventory = import_inventory_csv(args.inventory) if args.inventory else []

    api_key = args.upload_key or settings.pipeline.free_image_api_key
    pipeline = CardPipeline.from_settings(
        settings,
        database=database,
        inventory=inventory,
        image_host=FreeImageHost(api_key) if api_key else None,
        price_lookup=db_service.fetch_card_prices,
    )
    manager = BulkScanManager(pipeline, settings.bulk, on_result=print_result)

    loop = asyncio.get_running_loop()
    resume_signal = getattr(signal, "SIGUSR1", None)
    try:
        loop.add_signal_handler(signal.SIGINT, manager.stop)
        if resume_signal is not None:
            loop.add_signal_handler(resume_signal, manager.resume)
    except NotImplementedError:
        resume_signal = None

    if settings.bulk.error_handling == "pause":
        if resume_signal is not None:
            logger.warning(f"A failure pauses the scan: send SIGUSR1 (kill -USR1 {os.getpid()}) to resume or Ctrl-C to stop")
        else:
            logger.warning("A failure pauses the scan and only Ctrl-C ends it on this platform")

    try:
        results = await manager.run(files)
    finally:
        pipeline.close()

    state = manager.state
    print(f"Processed {state.processed_count}, matched {state.matched_count}, failed {state.failed_count}")

    if args.results and results:
        export_results_csv(results, args.results)
        print(f"Wrote {args.results}")
    return 0

async def run_update_db(args) -> int:
    count = await CardDatabaseService().fetch_card_database()
    print(f"Card database updated: {count} cards")
    return 0

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Trading card image recognition")
    ap.add_argument("--config", default=CONFIG_PATH, help="scanner config JSON")
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="recognize card images")
    scan.add_argument("paths", nargs="+", help="image files or folders")
    scan.add_argument("-r", "--recursive", action="store_true")
    scan.add_argument("--inventory", help="inventory CSV to match against")
    scan.add_argument("--no-database", action="store_true", help="match against the inventory only")
    scan.add_argument("-o", "--results", help="write results CSV here")
    scan.add_argument("--max-concurrent", type=int, choices=range(1, 6), metavar="1-5")
    scan.add_argument("--batch-size", type=int, choices=ALLOWED_BATCH_SIZES)
    scan.add_argument("--error-handling", choices=ERROR_HANDLING_MODES,
                      help="pause: a failure pauses the scan until SIGUSR1 resumes it or Ctrl-C stops it")
    scan.add_argument("--no-skip-duplicates", action="store_true")
    scan.add_argument("--no-retry", action="store_true")
    scan.add_argument("--engine", choices=["tesseract", "easyocr"])
    scan.add_argument("--strategy", choices=["best_of", "retry"])
    scan.add_argument("--no-prices", action="store_true")
    scan.add_argument("--upload-key", help="freeimage.host API key")
    scan.set_defaults(handler=run_scan)

    update = sub.add_parser("update-db", help="download the reference card database")
    update.set_defaults(handler=run_update_db)
    return ap

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    return asyncio.run(args.handler(args))

if __name__ == "__main__":
    sys.exit(main())
