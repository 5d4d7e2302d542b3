"""Root context that owns every tracking component.

``Tracker`` builds the dispatcher, process runner, repository watcher,
consumer registry, and update pipeline once and hands them to each other
explicitly. Hosts talk to the tracker with opaque consumer ids (an editor
buffer number, a file path, ...) and read back per-consumer data.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

from .config import TrackerOptions
from .pipeline import UpdatePipeline
from .process import ProcessRunner
from .registry import ConsumerId, ConsumerProjection, ConsumerRegistry, SummaryUpdated, TrackingState
from .repo_watch import RepoWatcher, Subscriber, WatchdogSubscriber
from .runtime.dispatch import Dispatcher

logger = logging.getLogger(__name__)


class TrackerError(ValueError):
    """Raised for invalid arguments passed to the public tracker API."""


def _validate_consumer_id(consumer_id: ConsumerId) -> ConsumerId:
    if consumer_id is None:
        raise TrackerError("`consumer_id` should not be None.")
    try:
        hash(consumer_id)
    except TypeError as exc:
        raise TrackerError(f"`consumer_id` should be hashable, not {type(consumer_id).__name__}.") from exc
    return consumer_id


class Tracker:
    """Track current-commit data for many consumers at once.

    Args:
        options: Tracker options, defaults when omitted.
        dispatcher: Event loop driving every callback. Created when omitted.
        subscriber: Filesystem subscription source. A watchdog-backed
            subscriber owned by the tracker is created when omitted.
        runner: Process runner. Created from ``options`` when omitted.
        request_redraw: Called after a query updated at least one consumer.
        which: Executable lookup used to check for ``jj`` at startup.
    """

    def __init__(
        self,
        options: TrackerOptions | None = None,
        *,
        dispatcher: Dispatcher | None = None,
        subscriber: Subscriber | None = None,
        runner: ProcessRunner | None = None,
        request_redraw: Callable[[], None] = lambda: None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.options = options if options is not None else TrackerOptions()
        self.dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self._owned_subscriber: WatchdogSubscriber | None = None
        if subscriber is None:
            self._owned_subscriber = WatchdogSubscriber(self.dispatcher)
            subscriber = self._owned_subscriber
        self.runner = runner if runner is not None else ProcessRunner(self.dispatcher, timeout_ms=self.options.timeout_ms)
        self.watcher = RepoWatcher(
            self.dispatcher,
            subscriber,
            self._on_repo_change,
            debounce_ms=self.options.debounce_ms,
        )
        self.registry = ConsumerRegistry(
            self.watcher,
            color=self.options.color,
            globally_disabled=lambda: self.options.disabled,
        )
        self.pipeline = UpdatePipeline(
            self.registry,
            self.watcher,
            self.runner,
            options=self.options,
            request_redraw=request_redraw,
        )

        self.has_jj = which(self.options.jj_executable) is not None
        if not self.has_jj:
            logger.warning("There is no `%s` executable", self.options.jj_executable)

    def _on_repo_change(self, repo: Path) -> None:
        self.pipeline.on_repo_change(repo)

    def enable(self, consumer_id: ConsumerId, path: Path | str) -> bool:
        """Start tracking ``path`` for ``consumer_id``; no-op when already tracked."""
        consumer_id = _validate_consumer_id(consumer_id)
        if not self.has_jj:
            return False
        return self.pipeline.attach(consumer_id, path)

    def disable(self, consumer_id: ConsumerId) -> bool:
        return self.pipeline.detach(_validate_consumer_id(consumer_id))

    def toggle(self, consumer_id: ConsumerId, path: Path | str) -> bool:
        consumer_id = _validate_consumer_id(consumer_id)
        if not self.has_jj and consumer_id not in self.registry:
            return False
        return self.pipeline.toggle(consumer_id, path)

    def rename(self, consumer_id: ConsumerId, new_path: Path | str) -> bool:
        return self.pipeline.rename(_validate_consumer_id(consumer_id), new_path)

    def refresh(self, consumer_id: ConsumerId) -> bool:
        return self.pipeline.refresh(_validate_consumer_id(consumer_id))

    def block(self, consumer_id: ConsumerId) -> None:
        """Stop tracking ``consumer_id`` and refuse future enables for it."""
        consumer_id = _validate_consumer_id(consumer_id)
        self.registry.disable(consumer_id)
        self.pipeline.detach(consumer_id)

    def unblock(self, consumer_id: ConsumerId) -> None:
        self.registry.enable(_validate_consumer_id(consumer_id))

    def is_enabled(self, consumer_id: ConsumerId) -> bool:
        return _validate_consumer_id(consumer_id) in self.registry

    def is_pending(self, consumer_id: ConsumerId) -> bool:
        """Whether a ``jj`` call for ``consumer_id`` is still outstanding."""
        entry = self.registry.get(_validate_consumer_id(consumer_id))
        return entry is not None and entry.state in (TrackingState.RESOLVING, TrackingState.QUERYING)

    def is_outside_workspace(self, consumer_id: ConsumerId) -> bool:
        """Whether resolution found ``consumer_id``'s file outside any jj workspace."""
        entry = self.registry.get(_validate_consumer_id(consumer_id))
        return entry is not None and entry.repo is None and entry.state is TrackingState.TORN_DOWN

    def get_data(self, consumer_id: ConsumerId) -> dict[str, object] | None:
        """Return tracked data for ``consumer_id``.

        ``None`` means the consumer is not tracked. An empty dict means it is
        tracked but has no workspace yet, either because resolution is still
        running or because its file is outside any jj workspace
        (``is_outside_workspace`` tells the two apart).
        """
        entry = self.registry.get(_validate_consumer_id(consumer_id))
        if entry is None:
            return None
        if entry.repo is None:
            return {}
        summary = entry.summary
        return {
            "repo": entry.repo,
            "root": entry.root,
            "change_id_prefix": summary.change_id_prefix if summary is not None else None,
            "change_id_rest": summary.change_id_rest if summary is not None else None,
        }

    def get_projection(self, consumer_id: ConsumerId) -> ConsumerProjection | None:
        return self.registry.projection(_validate_consumer_id(consumer_id))

    def subscribe(self, listener: Callable[[SummaryUpdated], None]) -> Callable[[], None]:
        return self.registry.subscribe(listener)

    def run_pending(self) -> int:
        return self.dispatcher.run_pending()

    def run(self, should_stop: Callable[[], bool] = lambda: False) -> None:
        """Drive the dispatcher until ``should_stop`` returns true."""
        self.dispatcher.run_forever(should_stop)

    def close(self) -> None:
        """Detach every consumer and stop all watches."""
        for consumer_id in self.registry.consumer_ids():
            self.pipeline.detach(consumer_id)
        self.watcher.teardown_all()
        if self._owned_subscriber is not None:
            self._owned_subscriber.close()
