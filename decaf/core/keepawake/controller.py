"""
Lifecycle of the single keep-awake helper process.

State machine: STOPPED <-> RUNNING. start() while running and stop() while
stopped are no-ops. Spawn failures are logged and leave the controller
STOPPED; keeping the machine awake is best-effort.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from typing import Callable, Optional

from ..monitor.types import KeepAwakeStatus
from .helper import HelperCommand, default_helper_command

log = logging.getLogger(__name__)


class KeepAwakeController:
    """
    Owns at most one helper child.

    Every spawned child gets a daemon watcher thread that waits for it and
    then calls the exit callback. The callback runs on the watcher thread;
    callers are expected to marshal it onto their own context.

    The callback is skipped for children we stopped ourselves and for
    children that died before min_lifetime seconds. A helper that cannot
    stay up is then retried by the caller's regular poll, not in a loop.
    """

    def __init__(
        self,
        command: Optional[HelperCommand] = None,
        bind_to_pid: bool = True,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self._command = command or default_helper_command()
        self._bind_to_pid = bind_to_pid
        self._popen = popen
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        self._exit_cb: Optional[Callable[[], None]] = None
        self._min_lifetime = 0.0

    def on_exit(self, cb: Callable[[], None], min_lifetime: float = 0.0) -> None:
        self._exit_cb = cb
        self._min_lifetime = min_lifetime

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    @property
    def state(self) -> KeepAwakeStatus:
        return "RUNNING" if self.is_running else "STOPPED"

    def update(self, should_run: bool, keep_display_on: bool) -> None:
        running = self.is_running
        if should_run and not running:
            self.start(keep_display_on)
        elif not should_run and running:
            self.stop()

    def restart(self, keep_display_on: bool) -> None:
        self.stop()
        self.start(keep_display_on)

    def start(self, keep_display_on: bool) -> None:
        if self.is_running:
            return

        pid = os.getpid() if self._bind_to_pid else None
        argv = self._command.argv(keep_display_on, pid)
        try:
            process = self._popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            with self._lock:
                self._process = None
            log.warning(f"Failed to start keep-awake helper {argv[0]}: {e}")
            return

        with self._lock:
            self._process = process
        log.info(f"Keep-awake helper started (pid={process.pid}, display={'on' if keep_display_on else 'off'})")

        watcher = threading.Thread(target=self._watch, args=(process, time.monotonic()), name="KeepAwakeWatcher", daemon=True)
        watcher.start()

    def stop(self) -> None:
        with self._lock:
            process = self._process
            self._process = None

        if process is None or process.poll() is not None:
            return

        try:
            process.terminate()
        except OSError as e:
            log.warning(f"Failed to terminate keep-awake helper (pid={process.pid}): {e}")
            return
        log.info(f"Keep-awake helper stopped (pid={process.pid})")

    def _watch(self, process: subprocess.Popen, started_at: float) -> None:
        try:
            code = process.wait()
        except Exception:
            log.exception("Keep-awake watcher failed")
            return
        lifetime = time.monotonic() - started_at
        log.debug(f"Keep-awake helper exited (pid={process.pid}, code={code}, after {lifetime:.2f}s)")

        with self._lock:
            stopped_by_us = self._process is not process
        if stopped_by_us:
            return
        if lifetime < self._min_lifetime:
            log.warning(f"Keep-awake helper exited after {lifetime:.2f}s (code={code}), retrying on next poll")
            return
        if self._exit_cb:
            self._exit_cb()
