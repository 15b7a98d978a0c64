from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, Optional

from decaf.shared.config import AppConfig
from decaf.shared.settings import JsonSettingsStore, PersistenceGateway

from .engine.loop import EngineLoop
from .engine.reconciler import ReconciliationEngine
from .keepawake.controller import KeepAwakeController
from .keepawake.helper import default_helper_command
from .monitor.enumerator import ApplicationEnumerator, PsutilApplicationEnumerator

log = logging.getLogger(__name__)


class KeepAwakeService:
    """
    Thread-safe facade over the engine. Every call is posted to the engine
    loop, so it may be used from a UI thread or a signal handler.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        settings: Optional[PersistenceGateway] = None,
        enumerator: Optional[ApplicationEnumerator] = None,
        controller: Optional[KeepAwakeController] = None,
    ) -> None:
        self.cfg = config or AppConfig()
        self.loop = EngineLoop(**self.cfg.to_loop_config())
        self.controller = controller or KeepAwakeController(
            command=default_helper_command(self.cfg.keep_awake_executable),
            bind_to_pid=self.cfg.bind_helper_to_app,
        )
        self.engine = ReconciliationEngine(
            settings=settings if settings is not None else JsonSettingsStore(),
            enumerator=enumerator or PsutilApplicationEnumerator(),
            controller=self.controller,
            post=self.loop.post,
            background=self.loop.executor,
            default_excluded=self.cfg.default_excluded_apps,
        )

        self.controller.on_exit(
            lambda: self.loop.post(self.engine.reconcile),
            min_lifetime=self.cfg.poll_interval_ms / 1000.0,
        )
        self.loop.on_tick(self.engine.reconcile)

    def on_event(self, cb: Callable[[dict], None]) -> None:
        """cb runs on the engine loop thread."""
        self.engine.on_event(cb)

    def start(self) -> None:
        log.info(f"Starting keep-awake service (poll every {self.cfg.poll_interval_ms} ms)")
        self.loop.start()

    def stop(self) -> None:
        self.loop.post(self.engine.shutdown)
        self.loop.stop()
        # The loop may have timed out before shutdown ran
        self.controller.stop()
        log.info("Keep-awake service stopped")

    def set_enabled(self, app_id: str, enabled: bool) -> None:
        self.loop.post(lambda: self.engine.set_enabled(app_id, enabled))

    def set_excluded(self, app_id: str, excluded: bool) -> None:
        self.loop.post(lambda: self.engine.set_excluded(app_id, excluded))

    def set_keep_display_on(self, keep_display_on: bool) -> None:
        self.loop.post(lambda: self.engine.set_keep_display_on(keep_display_on))

    def refresh(self) -> None:
        self.loop.post(self.engine.reconcile)

    def is_enabled(self, app_id: str) -> Future:
        return self.loop.submit(self.engine.is_enabled, app_id)
