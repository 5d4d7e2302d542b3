"""Resolve, query, and fan out commit data for tracked consumers.

A consumer moves through resolving (``jj workspace root``), watching its
repository, and querying (``jj log``) on every debounced repository change.
Queries run once per distinct worktree root and the parsed summary is applied
to every consumer sharing that root.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path

from .config import TrackerOptions
from .process import ProcessResult, ProcessRunner, report_result
from .registry import ConsumerEntry, ConsumerId, ConsumerRegistry, TrackingState
from .repo_watch import RepoWatcher
from .summary import parse_head_output

logger = logging.getLogger(__name__)


def resolve_consumer_path(path: Path | str) -> Path | None:
    """Return the real path of a readable file, or ``None``."""
    if not str(path):
        return None
    try:
        real = Path(path).resolve(strict=True)
    except (OSError, RuntimeError):
        return None
    if not real.is_file() or not os.access(real, os.R_OK):
        return None
    return real


class UpdatePipeline:
    """Drives consumers between registry, repository watcher, and ``jj``."""

    def __init__(
        self,
        registry: ConsumerRegistry,
        watcher: RepoWatcher,
        runner: ProcessRunner,
        *,
        options: TrackerOptions,
        request_redraw: Callable[[], None] = lambda: None,
    ) -> None:
        self._registry = registry
        self._watcher = watcher
        self._runner = runner
        self._options = options
        self._request_redraw = request_redraw

    def jj_command(self, *args: str) -> list[str]:
        return [self._options.jj_executable, *args]

    def head_command(self) -> list[str]:
        return self.jj_command(
            "log",
            "-r",
            "@",
            "--no-graph",
            "--ignore-working-copy",
            "--limit",
            "1",
            "--template",
            self._options.head_template,
        )

    def attach(self, consumer_id: ConsumerId, path: Path | str) -> bool:
        """Start tracking ``path`` for ``consumer_id``.

        No-op (returning ``False``) for unreadable paths, already tracked or
        disabled consumers.
        """
        real = resolve_consumer_path(path)
        if real is None:
            return False
        if not self._registry.attach(consumer_id, real):
            return False
        entry = self._registry.get(consumer_id)
        assert entry is not None
        self._runner.run(
            self.jj_command("workspace", "root"),
            real.parent,
            lambda result: self._on_workspace_root(entry, result),
        )
        return True

    def detach(self, consumer_id: ConsumerId) -> bool:
        return self._registry.detach(consumer_id) is not None

    def toggle(self, consumer_id: ConsumerId, path: Path | str) -> bool:
        """Detach a tracked consumer or attach an untracked one."""
        if consumer_id in self._registry:
            self.detach(consumer_id)
            return False
        return self.attach(consumer_id, path)

    def rename(self, consumer_id: ConsumerId, new_path: Path | str) -> bool:
        """Re-resolve a tracked consumer whose file moved.

        The new location may live in another repository, so this is a full
        detach followed by attach.
        """
        if consumer_id not in self._registry:
            return False
        self.detach(consumer_id)
        return self.attach(consumer_id, new_path)

    def refresh(self, consumer_id: ConsumerId) -> bool:
        """Re-query commit data for one consumer, e.g. after its file reloads."""
        entry = self._registry.get(consumer_id)
        if entry is None or entry.root is None:
            return False
        self.update_head(entry.root, [consumer_id])
        return True

    def _on_workspace_root(self, entry: ConsumerEntry, result: ProcessResult) -> None:
        consumer_id = entry.consumer_id
        if self._registry.get(consumer_id) is not entry:
            logger.debug("Dropping workspace root for detached consumer %r", consumer_id)
            return
        if not result.ok:
            logger.debug("Consumer %r is not inside a jj workspace", consumer_id)
            self._registry.mark_not_in_repo(consumer_id, entry.path)
            return
        report_result(result)

        if not result.out:
            logger.warning("No initial data for consumer %r", consumer_id)
            return
        root = Path(result.out.splitlines()[0].strip())
        repo = root / self._options.metadata_dirname
        self._registry.update(consumer_id, repo=repo, root=root)
        self._watcher.register_consumer(repo, consumer_id)
        self._registry.set_state(consumer_id, TrackingState.WATCHING)
        self.update_head(root, [consumer_id])

    def on_repo_change(self, repo: Path) -> None:
        """Query once per distinct root among ``repo``'s live members.

        Members that are no longer tracked (or moved elsewhere) are dropped
        from the watch on the way.
        """
        root_consumers: dict[Path, list[ConsumerId]] = {}
        for consumer_id in self._watcher.members(repo):
            entry = self._registry.get(consumer_id)
            if entry is None or entry.repo != repo or entry.root is None:
                self._watcher.unregister_consumer(repo, consumer_id)
                continue
            root_consumers.setdefault(entry.root, []).append(consumer_id)

        for root, consumer_ids in root_consumers.items():
            self.update_head(root, consumer_ids)

    def update_head(self, root: Path, consumer_ids: Iterable[ConsumerId]) -> None:
        consumer_ids = list(consumer_ids)
        for consumer_id in consumer_ids:
            self._registry.set_state(consumer_id, TrackingState.QUERYING)
        self._runner.run(
            self.head_command(),
            root,
            lambda result: self._on_head(root, consumer_ids, result),
        )

    def _on_head(self, root: Path, consumer_ids: list[ConsumerId], result: ProcessResult) -> None:
        for consumer_id in consumer_ids:
            entry = self._registry.get(consumer_id)
            if entry is not None and entry.state is TrackingState.QUERYING:
                self._registry.set_state(consumer_id, TrackingState.WATCHING)

        if report_result(result):
            return
        summary = parse_head_output(result.out)
        if summary is None:
            logger.warning("Could not parse HEAD data for root %s\n%s", root, result.out)
            return

        updated = False
        for consumer_id in consumer_ids:
            entry = self._registry.get(consumer_id)
            if entry is None or entry.root != root:
                continue
            updated = self._registry.update(consumer_id, summary=summary) or updated
        if updated:
            self._request_redraw()
