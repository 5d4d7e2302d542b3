"""Tests for process spawning, timeouts, and output normalization.

Spawns real short-lived Python subprocesses; completion and timeout races
are driven through a fake dispatcher clock.
"""

from __future__ import annotations

import sys
import tempfile
import time
import unittest
from pathlib import Path

from jjwatch.process import (
    ProcessResult,
    ProcessRunner,
    normalize_stderr,
    normalize_stdout,
    report_result,
)
from jjwatch.runtime.dispatch import Dispatcher


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _drain_until(dispatcher: Dispatcher, predicate, timeout_seconds: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        dispatcher.run_pending()
        if predicate():
            return True
        time.sleep(0.005)
    return False


class ProcessRunnerTests(unittest.TestCase):
    def test_run_captures_normalized_output(self) -> None:
        dispatcher = Dispatcher()
        runner = ProcessRunner(dispatcher, timeout_ms=10000)
        results: list[ProcessResult] = []

        runner.run(
            _python("import sys; print('hello'); print(); sys.stderr.write('careful\\n')"),
            None,
            results.append,
        )

        self.assertTrue(_drain_until(dispatcher, lambda: bool(results)))
        self.assertEqual(results[0], ProcessResult(code=0, out="hello", err="careful"))

    def test_run_uses_working_directory(self) -> None:
        dispatcher = Dispatcher()
        runner = ProcessRunner(dispatcher, timeout_ms=10000)
        results: list[ProcessResult] = []
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            runner.run(_python("import os; print(os.getcwd())"), root, results.append)
            self.assertTrue(_drain_until(dispatcher, lambda: bool(results)))
        self.assertEqual(Path(results[0].out).resolve(), root)

    def test_nonzero_exit_is_reported(self) -> None:
        dispatcher = Dispatcher()
        runner = ProcessRunner(dispatcher, timeout_ms=10000)

        result = runner.run_sync(_python("import sys; sys.stderr.write('bad'); sys.exit(3)"), None)

        self.assertEqual(result.code, 3)
        self.assertEqual(result.err, "bad")
        self.assertFalse(result.ok)
        self.assertFalse(result.timed_out)

    def test_missing_executable_completes_with_failure(self) -> None:
        dispatcher = Dispatcher()
        runner = ProcessRunner(dispatcher, timeout_ms=1000)

        result = runner.run_sync(["jjwatch-definitely-not-installed"], None)

        self.assertEqual(result.code, 1)
        self.assertTrue(result.err)

    def test_timeout_kills_process_and_reports_exit_code_one(self) -> None:
        dispatcher = Dispatcher()
        runner = ProcessRunner(dispatcher, timeout_ms=100)

        with self.assertLogs("jjwatch.process", level="WARNING") as logs:
            result = runner.run_sync(_python("import time; time.sleep(30)"), None)

        self.assertEqual(result.code, 1)
        self.assertTrue(result.timed_out)
        self.assertTrue(any("reached timeout" in line for line in logs.output))


class ProcessCompletionRaceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.dispatcher = Dispatcher(monotonic=self.clock)
        self.runner = ProcessRunner(self.dispatcher, timeout_ms=1000)

    def test_exit_before_timeout_completes_once(self) -> None:
        results: list[ProcessResult] = []
        self.runner.run(_python("print('done')"), None, results.append)

        self.assertTrue(_drain_until(self.dispatcher, lambda: bool(results)))
        self.clock.advance(5.0)
        self.dispatcher.run_pending()

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].code, 0)
        self.assertEqual(results[0].out, "done")

    def test_timeout_before_exit_completes_once(self) -> None:
        results: list[ProcessResult] = []
        invocation = self.runner.run(_python("import time; time.sleep(30)"), None, results.append)

        self.clock.advance(2.0)
        with self.assertLogs("jjwatch.process", level="WARNING"):
            self.dispatcher.run_pending()
        self.assertEqual(len(results), 1)
        self.assertTrue(results[0].timed_out)

        process = invocation._process
        assert process is not None
        self.assertTrue(_drain_until(self.dispatcher, lambda: process.poll() is not None))
        time.sleep(0.05)
        self.dispatcher.run_pending()

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].code, 1)


class NormalizationTests(unittest.TestCase):
    def test_stdout_drops_trailing_newlines_only(self) -> None:
        self.assertEqual(normalize_stdout("  a\nb\n\n\n"), "  a\nb")

    def test_stderr_splits_carriage_returns_and_collapses_blank_lines(self) -> None:
        self.assertEqual(normalize_stderr("1%\r\r50%\rdone\n  \t\nnext\n"), "1%\n50%\ndone\n\nnext")


class ReportResultTests(unittest.TestCase):
    def test_failure_logs_error_with_stdout(self) -> None:
        with self.assertLogs("jjwatch.process", level="ERROR") as logs:
            stop = report_result(ProcessResult(code=1, out="partial", err="broken"))
        self.assertTrue(stop)
        self.assertIn("broken\npartial", logs.output[0])

    def test_stderr_on_success_is_only_a_warning(self) -> None:
        with self.assertLogs("jjwatch.process", level="WARNING") as logs:
            stop = report_result(ProcessResult(code=0, out="ok", err="heads up"))
        self.assertFalse(stop)
        self.assertTrue(logs.output[0].startswith("WARNING:"))

    def test_clean_success_logs_nothing(self) -> None:
        with self.assertNoLogs("jjwatch.process", level="WARNING"):
            self.assertFalse(report_result(ProcessResult(code=0, out="ok", err="")))

    def test_timed_out_result_stops_without_second_report(self) -> None:
        with self.assertNoLogs("jjwatch.process", level="WARNING"):
            self.assertTrue(report_result(ProcessResult(code=1, out="", err="", timed_out=True)))

    def test_silent_failure_names_exit_code(self) -> None:
        with self.assertLogs("jjwatch.process", level="ERROR") as logs:
            self.assertTrue(report_result(ProcessResult(code=3, out="", err="")))
        self.assertIn("Command exited with code 3", logs.output[0])


if __name__ == "__main__":
    unittest.main()
