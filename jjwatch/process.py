"""External command execution with timeouts.

Commands are spawned with ``subprocess.Popen``; helper threads drain the
pipes and hand the exit back to the dispatcher thread. A dispatcher timer
enforces the timeout, and whichever of exit or timeout lands first is the
only completion the caller sees.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from .runtime.dispatch import Dispatcher

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
SYNC_WAIT_MARGIN_MS = 10
SYNC_POLL_SECONDS = 0.001
_READ_CHUNK_SIZE = 65536

_TRAILING_NEWLINES_RE = re.compile(r"\n+$")
_CARRIAGE_RETURNS_RE = re.compile(r"\r+")
_BLANKISH_LINE_RE = re.compile(r"\n\s+\n")


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one command invocation."""

    code: int
    out: str
    err: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.code == 0


def normalize_stdout(text: str) -> str:
    return _TRAILING_NEWLINES_RE.sub("", text)


def normalize_stderr(text: str) -> str:
    """Make stderr suitable for a notification.

    Carriage-return progress output becomes separate lines and whitespace-only
    lines collapse to blank ones.
    """
    text = _TRAILING_NEWLINES_RE.sub("", text)
    text = _CARRIAGE_RETURNS_RE.sub("\n", text)
    return _BLANKISH_LINE_RE.sub("\n\n", text)


def report_result(result: ProcessResult) -> bool:
    """Log a finished command; return ``True`` when the caller should stop.

    Non-zero exit is an error carrying stderr and any stdout. Zero exit with
    stderr output is only a warning. Timeouts were already reported when the
    process was killed.
    """
    if result.timed_out:
        return True
    if not result.ok:
        message = result.err if not result.out else f"{result.err}\n{result.out}"
        logger.error("%s", message or f"Command exited with code {result.code}")
        return True
    if result.err:
        logger.warning("%s", result.err)
    return False


def _read_stream(stream: IO[bytes], feed: list[bytes]) -> None:
    try:
        while True:
            chunk = stream.read1(_READ_CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                break
            feed.append(chunk)
    except (OSError, ValueError) as exc:
        feed.insert(0, f"ERROR: {exc}\n".encode("utf-8"))
    finally:
        with contextlib.suppress(OSError):
            stream.close()


class ProcessInvocation:
    """One spawned command and its single completion."""

    def __init__(
        self,
        command: Sequence[str],
        cwd: Path,
        on_done: Callable[[ProcessResult], None],
        *,
        dispatcher: Dispatcher,
        timeout_seconds: float,
        popen: Callable[..., subprocess.Popen[bytes]],
    ) -> None:
        self.command = tuple(command)
        self.cwd = cwd
        self._on_done = on_done
        self._dispatcher = dispatcher
        self._timeout_seconds = timeout_seconds
        self._popen = popen
        self._process: subprocess.Popen[bytes] | None = None
        self._out: list[bytes] = []
        self._err: list[bytes] = []
        self._done = False
        self._timed_out = False
        self._timer = dispatcher.new_timer()

    @property
    def done(self) -> bool:
        return self._done

    def start(self) -> None:
        logger.debug("Spawning %s in %s", " ".join(self.command), self.cwd)
        try:
            self._process = self._popen(
                list(self.command),
                cwd=str(self.cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            self._err.append(str(exc).encode("utf-8", errors="replace"))
            self._dispatcher.post(lambda: self._complete(1))
            return

        self._timer.start(self._timeout_seconds, self._on_timeout)
        threading.Thread(target=self._pump, name=f"jjwatch-pump-{self._process.pid}", daemon=True).start()

    def _pump(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None and process.stderr is not None
        readers = [
            threading.Thread(target=_read_stream, args=(process.stdout, self._out), daemon=True),
            threading.Thread(target=_read_stream, args=(process.stderr, self._err), daemon=True),
        ]
        for reader in readers:
            reader.start()
        code = process.wait()
        for reader in readers:
            reader.join()
        self._dispatcher.post(lambda: self._complete(code))

    def _on_timeout(self) -> None:
        if self._done:
            return
        logger.warning("Process reached timeout: %s", " ".join(self.command))
        self._timed_out = True
        if self._process is not None:
            with contextlib.suppress(OSError):
                self._process.kill()
        self._complete(1)

    def _complete(self, code: int) -> None:
        if self._done:
            return
        self._done = True
        self._timer.stop()
        out = normalize_stdout(b"".join(self._out).decode("utf-8", errors="replace"))
        err = normalize_stderr(b"".join(self._err).decode("utf-8", errors="replace"))
        self._on_done(ProcessResult(code=code, out=out, err=err, timed_out=self._timed_out))


class ProcessRunner:
    """Spawn commands asynchronously or synchronously on a dispatcher."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        popen: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
    ) -> None:
        self._dispatcher = dispatcher
        self.timeout_ms = timeout_ms
        self._popen = popen

    def run(
        self,
        command: Sequence[str],
        cwd: Path | None,
        on_done: Callable[[ProcessResult], None],
    ) -> ProcessInvocation:
        """Start ``command`` and call ``on_done`` once on the dispatcher thread."""
        invocation = ProcessInvocation(
            command,
            cwd if cwd is not None else Path(os.getcwd()),
            on_done,
            dispatcher=self._dispatcher,
            timeout_seconds=self.timeout_ms / 1000.0,
            popen=self._popen,
        )
        invocation.start()
        return invocation

    def run_sync(self, command: Sequence[str], cwd: Path | None) -> ProcessResult:
        """Run ``command`` and poll the dispatcher until it completes.

        Returns a failed, timed-out result if no completion arrives within the
        timeout plus a small margin.
        """
        results: list[ProcessResult] = []
        invocation = self.run(command, cwd, results.append)
        wait_seconds = (self.timeout_ms + SYNC_WAIT_MARGIN_MS) / 1000.0
        self._dispatcher.wait_until(lambda: invocation.done, wait_seconds, SYNC_POLL_SECONDS)
        if results:
            return results[0]
        return ProcessResult(code=1, out="", err="Process did not complete", timed_out=True)
