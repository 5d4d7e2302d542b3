"""Per-consumer tracking state and its consumer-facing projection.

The registry is the only writer of ``ConsumerEntry`` objects. Every update
rebuilds the consumer's ``ConsumerProjection`` and emits ``SummaryUpdated``
to subscribers; detaching clears the projection and releases the consumer's
membership in its repository watch.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .repo_watch import RepoWatcher
from .summary import CommitSummary, format_summary_string

logger = logging.getLogger(__name__)

ConsumerId = Hashable


class TrackingState(enum.Enum):
    RESOLVING = "resolving"
    WATCHING = "watching"
    QUERYING = "querying"
    TORN_DOWN = "torn_down"


@dataclass
class ConsumerEntry:
    consumer_id: ConsumerId
    path: Path | None = None
    repo: Path | None = None
    root: Path | None = None
    summary: CommitSummary | None = None
    state: TrackingState = TrackingState.RESOLVING


_ENTRY_FIELDS = frozenset(f.name for f in dataclasses.fields(ConsumerEntry)) - {"consumer_id"}


@dataclass(frozen=True)
class ConsumerProjection:
    """Status-line friendly view of one consumer's tracked data."""

    repo: Path | None = None
    root: Path | None = None
    change_id_prefix: str = ""
    change_id_rest: str = ""
    properties: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))
    local_bookmarks: tuple[str, ...] = ()
    remote_bookmarks: tuple[str, ...] = ()
    summary_string: str = ""

    @classmethod
    def from_entry(cls, entry: ConsumerEntry, color: bool = False) -> ConsumerProjection:
        summary = entry.summary
        if summary is None:
            return cls(repo=entry.repo, root=entry.root)
        return cls(
            repo=entry.repo,
            root=entry.root,
            change_id_prefix=summary.change_id_prefix,
            change_id_rest=summary.change_id_rest,
            properties=summary.properties,
            local_bookmarks=summary.local_bookmarks,
            remote_bookmarks=summary.remote_bookmarks,
            summary_string=format_summary_string(summary, color=color),
        )


@dataclass(frozen=True)
class SummaryUpdated:
    """Fired after every successful update of one consumer."""

    consumer_id: ConsumerId
    projection: ConsumerProjection


class ConsumerRegistry:
    """Tracked consumers keyed by opaque consumer id."""

    def __init__(
        self,
        watcher: RepoWatcher,
        *,
        color: bool = False,
        globally_disabled: Callable[[], bool] = lambda: False,
    ) -> None:
        self._watcher = watcher
        self._color = color
        self._globally_disabled = globally_disabled
        self._entries: dict[ConsumerId, ConsumerEntry] = {}
        self._projections: dict[ConsumerId, ConsumerProjection] = {}
        self._disabled: set[ConsumerId] = set()
        self._listeners: list[Callable[[SummaryUpdated], None]] = []

    def __contains__(self, consumer_id: ConsumerId) -> bool:
        return consumer_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def consumer_ids(self) -> list[ConsumerId]:
        return list(self._entries)

    def get(self, consumer_id: ConsumerId) -> ConsumerEntry | None:
        return self._entries.get(consumer_id)

    def projection(self, consumer_id: ConsumerId) -> ConsumerProjection | None:
        return self._projections.get(consumer_id)

    def is_disabled(self, consumer_id: ConsumerId) -> bool:
        return self._globally_disabled() or consumer_id in self._disabled

    def disable(self, consumer_id: ConsumerId) -> None:
        """Administratively block ``consumer_id`` from future attaches."""
        self._disabled.add(consumer_id)

    def enable(self, consumer_id: ConsumerId) -> None:
        self._disabled.discard(consumer_id)

    def subscribe(self, listener: Callable[[SummaryUpdated], None]) -> Callable[[], None]:
        """Register ``listener`` for update events; return an unsubscribe hook."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self, consumer_id: ConsumerId, path: Path | None = None) -> bool:
        if consumer_id in self._entries or self.is_disabled(consumer_id):
            return False
        self._entries[consumer_id] = ConsumerEntry(consumer_id=consumer_id, path=path)
        return True

    def update(self, consumer_id: ConsumerId, **fields: object) -> bool:
        """Merge ``fields`` into the entry and publish the new projection.

        Returns ``False`` for consumers that are no longer tracked, which is
        how late results for detached consumers get dropped.
        """
        entry = self._entries.get(consumer_id)
        if entry is None:
            return False
        unknown = set(fields) - _ENTRY_FIELDS
        if unknown:
            raise TypeError(f"unknown consumer fields: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            setattr(entry, name, value)

        projection = ConsumerProjection.from_entry(entry, color=self._color)
        self._projections[consumer_id] = projection
        self._emit(SummaryUpdated(consumer_id=consumer_id, projection=projection))
        return True

    def set_state(self, consumer_id: ConsumerId, state: TrackingState) -> None:
        """Record a pipeline transition without publishing an update."""
        entry = self._entries.get(consumer_id)
        if entry is not None:
            entry.state = state

    def _emit(self, event: SummaryUpdated) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Update listener failed for %r", event.consumer_id)

    def detach(self, consumer_id: ConsumerId) -> ConsumerEntry | None:
        """Forget ``consumer_id`` and release its repository membership."""
        entry = self._entries.pop(consumer_id, None)
        if entry is None:
            return None
        self._projections.pop(consumer_id, None)
        entry.state = TrackingState.TORN_DOWN
        if entry.repo is not None:
            self._watcher.unregister_consumer(entry.repo, consumer_id)
        return entry

    def mark_not_in_repo(self, consumer_id: ConsumerId, path: Path | None = None) -> None:
        """Keep an empty, torn-down entry so auto-attach does not retry."""
        self.detach(consumer_id)
        self._entries[consumer_id] = ConsumerEntry(
            consumer_id=consumer_id,
            path=path,
            state=TrackingState.TORN_DOWN,
        )
        self._projections[consumer_id] = ConsumerProjection()
