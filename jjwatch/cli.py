"""Command-line front door for jjwatch.

Parses CLI options, merges them over the persisted config, and attaches one
consumer per file argument. Every update prints a ``path: status`` line.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import load_options
from .registry import SummaryUpdated
from .tracker import Tracker

LOG_FORMAT = "(jjwatch) %(levelname)s: %(message)s"
ONCE_MARGIN_SECONDS = 1.0


def _positive_int(value: str) -> int:
    """argparse type for positive integer values."""
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be >= 1")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Print the current jj change of files and keep it up to date."
    )
    parser.add_argument("paths", nargs="+", help="Files to track.")
    parser.add_argument("--jj", dest="jj_executable", default=None, help="Path to the jj executable.")
    parser.add_argument("--timeout", dest="timeout_ms", type=_positive_int, default=None, help="Per-command timeout in ms.")
    parser.add_argument(
        "--debounce",
        dest="debounce_ms",
        type=_positive_int,
        default=None,
        help="Quiet period in ms before a repository change is queried.",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable color output even on TTY.")
    parser.add_argument("--once", action="store_true", help="Print initial status and exit instead of watching.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main() -> None:
    """Parse CLI arguments and track every given file until interrupted."""
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    paths = [Path(raw) for raw in args.paths]
    for path in paths:
        if not path.is_file():
            raise SystemExit(f"File not found: {path}")

    options = load_options().with_overrides(
        jj_executable=args.jj_executable,
        timeout_ms=args.timeout_ms,
        debounce_ms=args.debounce_ms,
    )
    color = False if args.no_color else (options.color or sys.stdout.isatty())
    options = options.with_overrides(color=color)

    tracker = Tracker(options)
    if not tracker.has_jj:
        raise SystemExit(f"There is no `{options.jj_executable}` executable")

    def print_update(event: SummaryUpdated) -> None:
        if not event.projection.summary_string:
            return
        sys.stdout.write(f"{event.consumer_id}: {event.projection.summary_string}\n")
        sys.stdout.flush()

    tracker.subscribe(print_update)
    consumer_ids = [str(path) for path in paths]
    try:
        for consumer_id, path in zip(consumer_ids, paths):
            tracker.enable(consumer_id, path)

        if args.once:
            tracker.dispatcher.wait_until(
                lambda: not any(tracker.is_pending(consumer_id) for consumer_id in consumer_ids),
                options.timeout_ms / 1000.0 + ONCE_MARGIN_SECONDS,
            )
            for consumer_id in consumer_ids:
                if tracker.is_outside_workspace(consumer_id):
                    sys.stdout.write(f"{consumer_id}: not in a jj workspace\n")
            return

        try:
            tracker.run()
        except KeyboardInterrupt:
            pass
    finally:
        tracker.close()


if __name__ == "__main__":
    main()
