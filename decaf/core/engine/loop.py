"""
Single owning thread for the reconciliation engine.

Timer ticks, user actions and helper-exit notifications all become callables
in one FIFO inbox and run in order on the loop thread. CPU-bound work that
must not stall the loop goes to the background executor.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

_STOP = object()


class EngineLoop:
    def __init__(self, interval_ms: int = 1000, background_workers: int = 1) -> None:
        self._interval = interval_ms / 1000.0
        self._inbox: queue.Queue = queue.Queue()
        self._tick_cb: Optional[Callable[[], None]] = None
        self._error_cb: Optional[Callable[[str], None]] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=background_workers, thread_name_prefix="DecafBackground")

    @property
    def executor(self) -> ThreadPoolExecutor:
        return self._executor

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def on_tick(self, cb: Callable[[], None]) -> None:
        self._tick_cb = cb

    def on_error(self, cb: Callable[[str], None]) -> None:
        self._error_cb = cb

    def in_loop(self) -> bool:
        return threading.current_thread() is self._thread

    def post(self, fn: Callable[[], None]) -> None:
        self._inbox.put(fn)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run fn on the loop thread and return a future for its result."""
        future: Future = Future()

        def _call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)

        if self.in_loop():
            _call()
        else:
            self.post(_call)
        return future

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run, name="EngineLoop", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop after the work already queued has run."""
        self._stop_evt.set()
        self._inbox.put(_STOP)
        if self._thread is not None and not self.in_loop():
            self._thread.join(timeout)
        self._executor.shutdown(wait=False)

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop_evt.is_set():
            now = time.monotonic()
            if now >= next_tick:
                next_tick = now + self._interval
                if self._tick_cb:
                    self._call(self._tick_cb)
                continue

            try:
                item = self._inbox.get(timeout=next_tick - now)
            except queue.Empty:
                continue

            if item is _STOP:
                break
            self._call(item)

        self._drain()

    def _drain(self) -> None:
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                self._call(item)

    def _call(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as e:
            log.exception("Engine loop error")
            if self._error_cb:
                self._error_cb(str(e))
