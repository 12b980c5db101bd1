"""
Command-line interface for the gem analysis pipeline.

Usage:
    # Analyse every pending item
    python -m gem_analysis run

    # Analyse 20 items with 3 workers on a specific model
    python -m gem_analysis run --limit 20 --workers 3 --model gpt-5-mini

    # Show worklist progress
    python -m gem_analysis status

    # Retry failed items on the next run
    python -m gem_analysis reset --failed-only

    # Load items from a JSON file
    python -m gem_analysis import-items items.json
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.logging_config import setup_logging

from .errors import ConfigurationError
from .models import ImageAsset, Item
from .pipeline import build_pipeline, build_store
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="gem_analysis",
        description="Multi-image AI gemstone analysis pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m gem_analysis run --limit 50
  python -m gem_analysis run --workers 10 --delay 2
  python -m gem_analysis status
  python -m gem_analysis reset --failed-only
  python -m gem_analysis import-items items.json
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Analyse pending items")
    run_parser.add_argument("--limit", type=int, default=None, help="Maximum items to process")
    run_parser.add_argument("--workers", type=int, default=None, help="Worker pool width")
    run_parser.add_argument("--model", type=str, default=None, help="Vision model from config/models.yaml")
    run_parser.add_argument("--delay", type=float, default=None, help="Seconds between claim waves")
    run_parser.add_argument("--items", nargs="+", default=None, help="Only these item ids")

    subparsers.add_parser("status", help="Show worklist summary")

    reset_parser = subparsers.add_parser("reset", help="Return items to pending")
    reset_parser.add_argument("--failed-only", action="store_true", help="Reset only failed items")
    reset_parser.add_argument("--items", nargs="+", default=None, help="Only these item ids")

    import_parser = subparsers.add_parser("import-items", help="Load items from a JSON file")
    import_parser.add_argument("path", type=str, help="JSON file with a list of items")

    return parser.parse_args(argv)


def _settings_for(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    overrides: Dict[str, Any] = {}
    if getattr(args, "workers", None) is not None:
        overrides["pool_width"] = args.workers
    if getattr(args, "model", None):
        overrides["vision_model"] = args.model
    if getattr(args, "delay", None) is not None:
        overrides["batch_delay_seconds"] = args.delay
    if overrides:
        # Re-validate overrides through the settings validators
        settings = Settings(**{**settings.model_dump(), **overrides})
    return settings


def parse_items(data: Any) -> List[Item]:
    """
    Items from decoded JSON.

    Each entry needs an ``id``; ``images`` may be a list of locations or of
    ``{id, location, ordinal, is_primary}`` objects.
    """
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of items")

    items = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValueError(f"Item entry without id: {entry!r}")
        item_id = str(entry["id"])

        images = []
        for position, image in enumerate(entry.get("images") or []):
            if isinstance(image, str):
                images.append(ImageAsset(id=f"{item_id}-{position}", location=image, ordinal=position))
            else:
                images.append(
                    ImageAsset(
                        id=str(image.get("id") or f"{item_id}-{position}"),
                        location=image.get("location") or image.get("url"),
                        ordinal=int(image.get("ordinal", position)),
                        is_primary=bool(image.get("is_primary", False)),
                    )
                )

        items.append(Item(id=item_id, images=images, manual_fields=dict(entry.get("manual_fields") or {})))
    return items


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    stop_event = threading.Event()
    pipeline = build_pipeline(settings, stop_event=stop_event)

    def _handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}; finishing in-flight items")
        pipeline.orchestrator.request_stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    summary = pipeline.orchestrator.run(item_ids=args.items, limit=args.limit)

    print("\n" + "=" * 60)
    print("BATCH COMPLETE" if not summary.stop_reason else f"BATCH STOPPED ({summary.stop_reason})")
    print("=" * 60)
    print(f"  Processed:           {summary.processed}")
    print(f"  Succeeded:           {summary.succeeded}")
    print(f"  Partially extracted: {summary.partially_extracted}")
    print(f"  Failed:              {summary.failed}")
    print(f"  Skipped:             {summary.skipped}")
    print(f"  Total cost:          ${summary.total_cost_usd:.4f}")
    print(f"  Average cost:        ${summary.average_cost_usd:.4f}")
    print(f"  Average time:        {summary.average_duration_ms / 1000:.1f}s")
    if summary.spend.get("remaining_usd") is not None:
        print(f"  Budget left today:   ${summary.spend['remaining_usd']:.4f}")
    for model, usage in sorted(summary.spend.get("by_model", {}).items()):
        print(
            f"  {model}: {usage['requests']} requests, "
            f"{usage['input_tokens']}/{usage['output_tokens']} tokens, ${usage['cost_usd']:.4f}"
        )
    if summary.failures:
        print("\n  Failures:")
        for item_id, reason in sorted(summary.failures.items()):
            print(f"    {item_id}: {reason}")
    print("=" * 60)

    return EXIT_OK if summary.failed == 0 else EXIT_FAILURE


def cmd_status(settings: Settings) -> int:
    _, repository, progress = build_store(settings)
    summary = progress.summary()
    known = repository.list_item_ids()
    terminal = set(progress.terminal_ids())

    print(f"Items in store: {len(known)}")
    print(f"Pending:        {len([i for i in known if i not in terminal])}")
    for status, count in summary["by_status"].items():
        print(f"  {status:<20} {count}")
    print(f"Total cost:     ${summary['total_cost_usd']:.4f}")
    return EXIT_OK


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    _, _, progress = build_store(settings)
    count = progress.reset(item_ids=args.items, only_failed=args.failed_only)
    print(f"Reset {count} item(s) to pending")
    return EXIT_OK


def cmd_import(args: argparse.Namespace, settings: Settings) -> int:
    path = Path(args.path)
    with open(path, "r", encoding="utf-8") as f:
        items = parse_items(json.load(f))

    _, repository, _ = build_store(settings)
    for item in items:
        repository.add_item(item)
    print(f"Imported {len(items)} item(s) from {path}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    try:
        settings = _settings_for(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION

    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    setup_logging(args.command, log_dir=settings.log_dir, level=level)

    try:
        if args.command == "run":
            return cmd_run(args, settings)
        if args.command == "status":
            return cmd_status(settings)
        if args.command == "reset":
            return cmd_reset(args, settings)
        if args.command == "import-items":
            return cmd_import(args, settings)
        return EXIT_FAILURE

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        for suggestion in e.suggestions:
            logger.error(f"  - {suggestion}")
        return EXIT_CONFIGURATION
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return EXIT_FAILURE
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
