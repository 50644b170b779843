"""Command line entry point for batch jobs.

Usage:
    cd backend && python -m memory_timeline.cli embed-missing
    python -m memory_timeline.cli reembed-all --clear
    python -m memory_timeline.cli analyze-timeline --threshold 0.7 --start-after evt-123
    python -m memory_timeline.cli patterns --output patterns.json
    python -m memory_timeline.cli suggest-tags --event evt-123
    python -m memory_timeline.cli suggest-tags --text "Weekend hike with Sam"

Ctrl-C cancels a running batch: nothing new starts, items in flight are
cancelled, and what already finished stays written.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from typing import Any

from memory_timeline.models.analysis import BatchProgress
from memory_timeline.workflows.batch_runner import CancellationToken

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def _print_progress(progress: BatchProgress) -> None:
    logger.info(
        "Progress %d/%d (%d failed) last=%s",
        progress.completed + progress.failed, progress.total, progress.failed, progress.current_item,
    )


def _install_cancel_handler(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _cancel, token)
    except NotImplementedError:  # Windows event loops
        logger.debug("SIGINT handler not supported; Ctrl-C will abort instead of cancelling")


def _cancel(token: CancellationToken) -> None:
    if not token.cancelled:
        logger.warning("Cancelling batch (finished items are kept)...")
    token.cancel()


async def run_command(args: argparse.Namespace) -> Any:
    """Run one subcommand and return a JSON-serializable result."""
    from memory_timeline.core import build_core
    from memory_timeline.db.database import create_db_and_tables

    create_db_and_tables()
    core = build_core()
    token = CancellationToken()
    _install_cancel_handler(token)
    try:
        if args.command == "embed-missing":
            result = await core.embed_missing(progress=_print_progress, cancel=token)
        elif args.command == "reembed-all":
            result = await core.reembed_all(progress=_print_progress, cancel=token, clear_first=args.clear)
        elif args.command == "analyze-timeline":
            result = await core.analyze_full_timeline(
                threshold=args.threshold,
                progress=_print_progress,
                cancel=token,
                start_after=args.start_after,
            )
        elif args.command == "patterns":
            result = core.detect_patterns()
        elif args.command == "suggest-tags":
            if args.event:
                result = core.suggest_tags(args.event, max_suggestions=args.max)
            else:
                result = await core.suggest_tags_for_text(args.text, max_suggestions=args.max)
        else:
            raise ValueError(f"Unknown command: {args.command}")
    finally:
        await core.aclose()

    if isinstance(result, list):
        return [item.model_dump(mode="json") for item in result]
    return result.model_dump(mode="json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Memory Timeline cross-reference and pattern engine")
    parser.add_argument("--output", "-o", help="Output JSON file path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("embed-missing", help="Embed every event that has no embedding yet")

    reembed = sub.add_parser("reembed-all", help="Re-embed every event with the configured provider")
    reembed.add_argument("--clear", action="store_true", help="Delete all embeddings first (provider switch)")

    analyze = sub.add_parser("analyze-timeline", help="Detect relationships across the whole timeline")
    analyze.add_argument("--threshold", "-t", type=float, default=None, help="Similarity threshold")
    analyze.add_argument("--start-after", default=None, help="Resume after this event id")

    sub.add_parser("patterns", help="Recurring categories, temporal clusters, era transitions")

    tags = sub.add_parser("suggest-tags", help="Suggest tags for an event or free text")
    source = tags.add_mutually_exclusive_group(required=True)
    source.add_argument("--event", "-e", help="Event id")
    source.add_argument("--text", help="Free text")
    tags.add_argument("--max", type=int, default=5, help="Maximum suggestions")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    logger.info("Running %s", args.command)

    result = asyncio.run(run_command(args))

    if args.output:
        with open(args.output, "w") as f:
            json.dump(result, f, indent=2, default=str)
        logger.info("Results written to %s", args.output)
    else:
        print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
