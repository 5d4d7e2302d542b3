"""Public package surface for jjwatch.

Exports the ``Tracker`` root context plus its options and the data types a
host reads back. ``main`` lazily imports the CLI entrypoint.
"""

from __future__ import annotations

from .config import TrackerOptions, load_options
from .registry import ConsumerProjection, SummaryUpdated, TrackingState
from .summary import CommitSummary
from .tracker import Tracker, TrackerError


def main(*args, **kwargs):
    """Lazily import CLI entrypoint to keep package imports lightweight."""
    from .cli import main as _main

    return _main(*args, **kwargs)


__all__ = [
    "CommitSummary",
    "ConsumerProjection",
    "SummaryUpdated",
    "Tracker",
    "TrackerError",
    "TrackerOptions",
    "TrackingState",
    "load_options",
    "main",
]
