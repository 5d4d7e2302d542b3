"""Per-repository filesystem watching with debounced change notification.

One ``RepoWatchEntry`` exists per metadata directory no matter how many
consumers resolved to it. The directory is watched non-recursively; lock-file
churn is ignored and bursts of events collapse into a single ``on_change``.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from .runtime.dispatch import Dispatcher, Timer

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 50
LOCK_SUFFIX = "lock"


class Subscription(Protocol):
    def is_active(self) -> bool: ...

    def stop(self) -> None: ...


class Subscriber(Protocol):
    """Source of filesystem subscriptions.

    ``subscribe`` must deliver ``on_event(filename)`` on the dispatcher thread.
    """

    def subscribe(self, directory: Path, on_event: Callable[[str], None]) -> Subscription: ...


class _PostingHandler(FileSystemEventHandler):
    """Forward watchdog events from the observer thread into the dispatcher."""

    def __init__(self, directory: Path, dispatcher: Dispatcher, on_event: Callable[[str], None]) -> None:
        super().__init__()
        self._directory = directory
        self._dispatcher = dispatcher
        self._on_event = on_event

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        src = Path(os.fsdecode(event.src_path))
        # Directory-modified echoes follow every child event.
        if src == self._directory:
            return
        filename = src.name
        self._dispatcher.post(lambda: self._on_event(filename))


class WatchdogSubscription:
    def __init__(self, subscriber: WatchdogSubscriber, watch: ObservedWatch) -> None:
        self._subscriber = subscriber
        self._watch: ObservedWatch | None = watch

    def is_active(self) -> bool:
        return self._watch is not None

    def stop(self) -> None:
        watch, self._watch = self._watch, None
        if watch is not None:
            self._subscriber._unschedule(watch)


class WatchdogSubscriber:
    """Subscriptions backed by one shared watchdog ``Observer``.

    The observer thread starts with the first subscription and is stopped by
    ``close``.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._observer: Observer | None = None

    def subscribe(self, directory: Path, on_event: Callable[[str], None]) -> WatchdogSubscription:
        if self._observer is None:
            self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
        handler = _PostingHandler(directory, self._dispatcher, on_event)
        watch = self._observer.schedule(handler, str(directory), recursive=False)
        return WatchdogSubscription(self, watch)

    def _unschedule(self, watch: ObservedWatch) -> None:
        if self._observer is None:
            return
        with contextlib.suppress(KeyError):
            self._observer.unschedule(watch)

    def close(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=1.0)


@dataclass
class RepoWatchEntry:
    repo: Path
    subscription: Subscription | None = None
    timer: Timer | None = None
    members: set[object] = field(default_factory=set)


class RepoWatcher:
    """Owns every repository subscription, debounce timer, and member set."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        subscriber: Subscriber,
        on_change: Callable[[Path], None],
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self._dispatcher = dispatcher
        self._subscriber = subscriber
        self._on_change = on_change
        self.debounce_ms = debounce_ms
        self._entries: dict[Path, RepoWatchEntry] = {}

    def is_watched(self, repo: Path) -> bool:
        return repo in self._entries

    def watched_repos(self) -> list[Path]:
        return list(self._entries)

    def members(self, repo: Path) -> set[object]:
        entry = self._entries.get(repo)
        return set(entry.members) if entry is not None else set()

    def entry(self, repo: Path) -> RepoWatchEntry | None:
        return self._entries.get(repo)

    def ensure_watch(self, repo: Path) -> RepoWatchEntry:
        """Return the live entry for ``repo``, subscribing if needed."""
        entry = self._entries.get(repo)
        if entry is not None and entry.subscription is not None and entry.subscription.is_active():
            return entry

        members = entry.members if entry is not None else set()
        self._stop_handles(entry)
        timer = self._dispatcher.new_timer()
        entry = RepoWatchEntry(repo=repo, timer=timer, members=members)
        self._entries[repo] = entry
        entry.subscription = self._subscriber.subscribe(repo, lambda filename: self._on_event(repo, filename))
        logger.debug("Watching %s", repo)
        return entry

    def _on_event(self, repo: Path, filename: str) -> None:
        if filename.endswith(LOCK_SUFFIX):
            return
        entry = self._entries.get(repo)
        if entry is None or entry.timer is None:
            return
        entry.timer.stop()
        entry.timer.start(self.debounce_ms / 1000.0, lambda: self._fire(repo))

    def _fire(self, repo: Path) -> None:
        if repo not in self._entries:
            return
        self._on_change(repo)

    def register_consumer(self, repo: Path, consumer_id: object) -> None:
        entry = self.ensure_watch(repo)
        entry.members.add(consumer_id)

    def unregister_consumer(self, repo: Path, consumer_id: object) -> None:
        entry = self._entries.get(repo)
        if entry is None:
            return
        entry.members.discard(consumer_id)
        if not entry.members:
            self.teardown(repo)

    def teardown(self, repo: Path) -> None:
        """Stop and forget the watch for ``repo``. Safe on inactive handles."""
        entry = self._entries.pop(repo, None)
        if entry is None:
            return
        self._stop_handles(entry)
        logger.debug("Stopped watching %s", repo)

    def teardown_all(self) -> None:
        for repo in list(self._entries):
            self.teardown(repo)

    @staticmethod
    def _stop_handles(entry: RepoWatchEntry | None) -> None:
        if entry is None:
            return
        if entry.subscription is not None:
            entry.subscription.stop()
        if entry.timer is not None:
            entry.timer.stop()
