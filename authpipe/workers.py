"""Background workers that run a function repeatedly on a fixed interval."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

_POLL_SECONDS = 0.05


class Worker:
    """Runs ``func`` every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(self, func: Callable[[], None], stop_event: threading.Event | None = None) -> None:
        self._func = func
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._done: threading.Event | None = None

    def start(self, interval: float) -> None:
        """Start (or restart) ticking every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        self.stop()
        done = threading.Event()
        self._done = done
        threading.Thread(target=self._run, args=(interval, done), daemon=True).start()

    def stop(self) -> None:
        """Stop ticking; a function call already running finishes."""
        if self._done is not None:
            self._done.set()

    def _halted(self, done: threading.Event) -> bool:
        return done.is_set() or self._stop_event.is_set()

    def _run(self, interval: float, done: threading.Event) -> None:
        next_tick = time.monotonic() + interval
        while True:
            remaining = next_tick - time.monotonic()
            if remaining > 0:
                done.wait(min(remaining, _POLL_SECONDS))
                if self._halted(done):
                    return
                continue
            if self._halted(done):
                return
            self._func()
            now = time.monotonic()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval


def start_worker(
    interval: float,
    func: Callable[[], None],
    stop_event: threading.Event | None = None,
) -> Worker:
    """Create a worker calling ``func`` every ``interval`` seconds and start it.

    Setting ``stop_event`` ends the worker just as ``Worker.stop`` does.
    """
    worker = Worker(func, stop_event)
    worker.start(interval)
    return worker