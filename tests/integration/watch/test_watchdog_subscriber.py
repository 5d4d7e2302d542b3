"""Integration tests for watchdog-backed repository subscriptions.

Uses a real observer thread on a temporary directory and drives delivery
through the dispatcher, so events must cross the thread boundary.
"""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from jjwatch.repo_watch import RepoWatcher, WatchdogSubscriber
from jjwatch.runtime.dispatch import Dispatcher

EVENT_WAIT_SECONDS = 5.0


class WatchdogSubscriberTests(unittest.TestCase):
    def setUp(self) -> None:
        self.dispatcher = Dispatcher()
        self.subscriber = WatchdogSubscriber(self.dispatcher)
        self.addCleanup(self.subscriber.close)

    def test_file_write_is_delivered_on_dispatcher(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp).resolve()
            seen: list[str] = []
            subscription = self.subscriber.subscribe(directory, seen.append)
            self.assertTrue(subscription.is_active())

            (directory / "op_heads").write_text("x", encoding="utf-8")

            self.assertTrue(self.dispatcher.wait_until(lambda: "op_heads" in seen, EVENT_WAIT_SECONDS))
            subscription.stop()
            self.assertFalse(subscription.is_active())
            subscription.stop()

    def test_watcher_debounces_real_events_into_one_change(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(tmp).resolve()
            changes: list[Path] = []
            watcher = RepoWatcher(self.dispatcher, self.subscriber, changes.append, debounce_ms=50)
            watcher.register_consumer(repo, "a")

            for index in range(3):
                (repo / f"op_{index}").write_text("x", encoding="utf-8")

            self.assertTrue(self.dispatcher.wait_until(lambda: bool(changes), EVENT_WAIT_SECONDS))
            self.assertEqual(changes[0], repo)

            watcher.unregister_consumer(repo, "a")
            self.assertFalse(watcher.is_watched(repo))

    def test_lock_files_do_not_trigger_changes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(tmp).resolve()
            changes: list[Path] = []
            watcher = RepoWatcher(self.dispatcher, self.subscriber, changes.append, debounce_ms=20)
            watcher.register_consumer(repo, "a")

            (repo / "working_copy.lock").write_text("x", encoding="utf-8")

            self.assertFalse(self.dispatcher.wait_until(lambda: bool(changes), 0.3))
            watcher.teardown_all()


if __name__ == "__main__":
    unittest.main()
