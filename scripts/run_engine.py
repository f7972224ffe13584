#!/usr/bin/env python3
"""Cost-of-carry engine CLI entry point.

Runs the live pipeline (timer-driven engine cycles plus expiry
housekeeping) until interrupted. Live ticks reach the pipeline through
CarryPipeline.on_tick(); ``--replay`` feeds a JSON-lines file of recorded
ticks through CarryPipeline.replay_tick(), which runs each spot-triggered
cycle on the recorded exchange clock.

Usage::

    python scripts/run_engine.py
    python scripts/run_engine.py --replay ticks.jsonl
    python scripts/run_engine.py --replay ticks.jsonl --once
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

# Ensure project root is on sys.path so ``carry_engine.*`` imports work when
# this script is invoked directly (e.g. ``python scripts/run_engine.py``).
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from carry_engine.core.exceptions import RetryBudgetExhaustedError, ValidationError
from carry_engine.core.utils.logging_config import configure_logging, get_logger
from carry_engine.pipeline import CarryPipeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed namespace with ``replay``, ``once``, ``log_level`` and
        ``json_logs`` attributes.
    """
    parser = argparse.ArgumentParser(
        description="Run the cost-of-carry engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_engine.py\n"
            "  python scripts/run_engine.py --replay ticks.jsonl\n"
            "  python scripts/run_engine.py --replay ticks.jsonl --once\n"
        ),
    )
    parser.add_argument(
        "--replay",
        type=Path,
        default=None,
        help="JSON-lines file of raw ticks to feed through the pipeline",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Exit after the replay instead of continuing with the timer loop",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit JSON lines instead of console output",
    )
    return parser.parse_args(argv)


async def replay(pipeline: CarryPipeline, path: Path) -> None:
    log = get_logger("run_engine", replay=str(path))
    accepted = rejected = 0
    with path.open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                if await pipeline.replay_tick(json.loads(line)):
                    accepted += 1
            except (ValidationError, json.JSONDecodeError) as exc:
                rejected += 1
                log.warning("replay_tick_rejected", error=str(exc))
    log.info("replay_complete", accepted=accepted, rejected=rejected)


async def run(args: argparse.Namespace) -> None:
    pipeline = CarryPipeline()
    if args.replay is not None:
        await replay(pipeline, args.replay)
        if args.once:
            return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await pipeline.run(stop)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the engine CLI.

    Returns:
        Exit code: 0 on clean shutdown, 1 when storage stayed unavailable.
    """
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_logs=args.json_logs)
    try:
        asyncio.run(run(args))
        return 0
    except RetryBudgetExhaustedError as exc:
        print(f"\nEngine stopped, storage unavailable: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
