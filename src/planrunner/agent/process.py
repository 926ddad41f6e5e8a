"""Cancellable execution scope around one agent subprocess.

A background thread reads stdout line by line into a queue while the caller
consumes lines and inspects them. Cancelling the scope stops consumption
immediately and terminates the subprocess without waiting for it to exit on
its own. An idle watchdog cancels the scope when no output arrives within the
configured window.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from ..exceptions import ExecutionStartError, ParseFailureKind, StreamParseError
from ..time_watchdog import IdleWatchdog

logger = logging.getLogger(__name__)

_EOF = object()
_POLL_SEC = 1.0


class AgentProcess:
    """Context manager owning the lifetime of one subprocess.

    Usage::

        with AgentProcess(args, cwd=workdir, idle_timeout_sec=3600) as proc:
            for line in proc.lines():
                parser.feed_line(line)
    """

    def __init__(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        idle_timeout_sec: Optional[float] = None,
        terminate_grace_sec: float = 5.0,
        stderr_lines: int = 50,
    ):
        self.args = list(args)
        self.cwd = str(cwd) if cwd is not None else None
        self.watchdog = IdleWatchdog(idle_timeout_sec)
        self.terminate_grace_sec = terminate_grace_sec

        self.process: Optional[subprocess.Popen] = None
        self.timed_out = False
        self._cancelled = threading.Event()
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._stderr: deque = deque(maxlen=stderr_lines)
        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "AgentProcess":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        try:
            self.process = subprocess.Popen(
                self.args,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise ExecutionStartError(f"failed to start agent: {e}", binary=self.args[0]) from e

        self.watchdog.start()
        self._spawn(self._read_stdout, "agent-stdout")
        self._spawn(self._read_stderr, "agent-stderr")
        logger.debug(f"[AgentProcess] Started pid={self.process.pid}: {self.args[0]}")

    def _spawn(self, target, name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def close(self) -> None:
        if self.process is None:
            return
        if self.process.poll() is None:
            self._terminate()
        else:
            self.process.wait()
        for thread in self._threads:
            thread.join(timeout=self.terminate_grace_sec)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_stdout(self) -> None:
        try:
            for line in self.process.stdout:
                self._queue.put(line)
        except (OSError, ValueError) as e:
            if not self._cancelled.is_set():
                self._queue.put(e)
        finally:
            self._queue.put(_EOF)

    def _read_stderr(self) -> None:
        try:
            for line in self.process.stderr:
                self._stderr.append(line.rstrip("\n"))
        except (OSError, ValueError):
            pass

    def lines(self) -> Iterator[str]:
        """Yield stdout lines until EOF, cancellation, or the idle watchdog fires.

        Raises:
            StreamParseError: The reader thread hit an I/O error
        """
        while not self._cancelled.is_set():
            remaining = self.watchdog.get_remaining_sec()
            timeout = _POLL_SEC if remaining is None else max(0.0, min(_POLL_SEC, remaining))
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                exceeded, idle = self.watchdog.check()
                if exceeded:
                    self.timed_out = True
                    logger.warning(
                        f"[AgentProcess] No output for {self.watchdog.format_elapsed(idle)}; "
                        "cancelling agent"
                    )
                    self.cancel()
                    return
                continue

            if item is _EOF:
                return
            if isinstance(item, Exception):
                raise StreamParseError(ParseFailureKind.READ_ERROR, str(item)) from item
            self.watchdog.touch()
            yield item

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop consuming output and terminate the subprocess. Safe to call twice."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self.process is not None and self.process.poll() is None:
            logger.info(f"[AgentProcess] Cancelling pid={self.process.pid}")
            self._terminate()

    def _terminate(self) -> None:
        self.process.terminate()
        try:
            self.process.wait(timeout=self.terminate_grace_sec)
        except subprocess.TimeoutExpired:
            logger.warning(f"[AgentProcess] pid={self.process.pid} ignored SIGTERM; killing")
            self.process.kill()
            self.process.wait()

    @property
    def returncode(self) -> Optional[int]:
        return None if self.process is None else self.process.returncode

    @property
    def stderr_text(self) -> str:
        return "\n".join(self._stderr)
