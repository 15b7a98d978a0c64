"""
Reconciliation of running applications against the user's selections.

Each cycle pulls a fresh snapshot, merges it with the enabled and hidden
records, recomputes every derived list from scratch and tells the
keep-awake controller whether the helper should run.

All methods must be called from a single owning context (see EngineLoop).
Only the icon encoding for hidden apps leaves that context; its result is
posted back before it touches any state.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from typing import Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from ..keepawake.controller import KeepAwakeController
from ..monitor.enumerator import ApplicationEnumerator
from ..monitor.icons import encode_png
from ..monitor.types import (
    RECORD_MAP,
    AppRecord,
    ProcessDescriptor,
    alphabetical_key,
    running_first_key,
    unique_by_id,
)
from decaf.shared.config import default_file_manager_id
from decaf.shared.settings import PersistenceGateway

log = logging.getLogger(__name__)

ENABLED_APPS_KEY = "enabledApps"
EXCLUDED_APPS_KEY = "excludedApps"
EXCLUDED_APP_INFO_KEY = "excludedAppInfo"
KEEP_DISPLAY_ON_KEY = "keepDisplayOn"


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime())


def _run_now(fn: Callable[[], None]) -> None:
    fn()


class ReconciliationEngine:
    """
    Owns the persisted selections and the four derived views:

    - merged_apps: running non-hidden apps plus enabled apps that quit,
      running first, then alphabetical
    - visible_apps: running non-hidden apps, alphabetical
    - hidden_apps: running hidden apps plus remembered hidden apps, alphabetical
    - should_keep_awake: any running app is enabled

    Enabled and hidden state are independent. Hiding an enabled app removes
    it from the lists and from the keep-awake decision but keeps its record.
    """

    def __init__(
        self,
        settings: PersistenceGateway,
        enumerator: ApplicationEnumerator,
        controller: KeepAwakeController,
        post: Optional[Callable[[Callable[[], None]], None]] = None,
        background: Optional[Executor] = None,
        icon_encoder: Callable[[bytes], bytes] = encode_png,
        default_excluded: Optional[List[str]] = None,
    ) -> None:
        self._settings = settings
        self._enumerator = enumerator
        self._controller = controller
        self._post = post or _run_now
        self._background = background
        self._encode_icon = icon_encoder
        self._default_excluded = (
            list(default_excluded) if default_excluded is not None else [default_file_manager_id()]
        )

        self._event_cb: Optional[Callable[[dict], None]] = None
        self._error_cb: Optional[Callable[[str], None]] = None

        self._enabled: Dict[str, AppRecord] = {}
        self._excluded: Set[str] = set()
        self._excluded_info: Dict[str, AppRecord] = {}
        self._keep_display_on = False

        self._merged: List[ProcessDescriptor] = []
        self._visible: List[ProcessDescriptor] = []
        self._hidden: List[ProcessDescriptor] = []
        self._should_keep_awake = False
        self._keep_awake_running = False
        self._shut_down = False

        self._load()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_event(self, cb: Callable[[dict], None]) -> None:
        self._event_cb = cb

    def on_error(self, cb: Callable[[str], None]) -> None:
        self._error_cb = cb

    def _emit(self, evt: dict) -> None:
        if self._event_cb:
            self._event_cb(evt)

    def _emit_error(self, msg: str) -> None:
        if self._error_cb:
            self._error_cb(msg)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def merged_apps(self) -> List[ProcessDescriptor]:
        return list(self._merged)

    @property
    def visible_apps(self) -> List[ProcessDescriptor]:
        return list(self._visible)

    @property
    def hidden_apps(self) -> List[ProcessDescriptor]:
        return list(self._hidden)

    @property
    def should_keep_awake(self) -> bool:
        return self._should_keep_awake

    @property
    def is_keep_awake_running(self) -> bool:
        return self._keep_awake_running

    @property
    def enabled_apps(self) -> Dict[str, AppRecord]:
        return dict(self._enabled)

    @property
    def excluded_apps(self) -> Set[str]:
        return set(self._excluded)

    @property
    def keep_display_on(self) -> bool:
        return self._keep_display_on

    def is_enabled(self, app_id: str) -> bool:
        return app_id in self._enabled

    def is_excluded(self, app_id: str) -> bool:
        return app_id in self._excluded

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_enabled(self, app_id: str, enabled: bool) -> None:
        if enabled:
            app = next((a for a in self._merged if a.id == app_id), None)
            if app is not None:
                self._enabled[app_id] = AppRecord(
                    id=app_id, name=app.display_name, icon_data=self._encode_icon(app.icon)
                )
                log.info(f"Enabled {app.display_name} ({app_id})")
            else:
                log.debug(f"Ignoring enable for unknown app {app_id}")
        elif self._enabled.pop(app_id, None) is not None:
            log.info(f"Disabled {app_id}")

        self.reconcile()
        self._persist_enabled()

    def set_excluded(self, app_id: str, excluded: bool) -> None:
        if excluded == (app_id in self._excluded):
            return

        # Capture before reconcile moves the app between lists
        app = next((a for a in self._visible if a.id == app_id), None) if excluded else None

        if excluded:
            self._excluded.add(app_id)
            log.info(f"Hid {app_id}")
        else:
            self._excluded.discard(app_id)
            self._excluded_info.pop(app_id, None)
            log.info(f"Unhid {app_id}")

        self._settings.set_string_list(EXCLUDED_APPS_KEY, sorted(self._excluded))
        self.reconcile()

        if app is not None:
            self._capture_excluded_info(app)
        else:
            self._persist_excluded_info()

    def set_keep_display_on(self, keep_display_on: bool) -> None:
        if keep_display_on == self._keep_display_on:
            return
        self._keep_display_on = keep_display_on
        self._settings.set_bool(KEEP_DISPLAY_ON_KEY, keep_display_on)
        if self._controller.is_running:
            self._controller.restart(keep_display_on)
        self._sync_keep_awake_running()

    def shutdown(self) -> None:
        self._shut_down = True
        self._controller.stop()
        self._sync_keep_awake_running()

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(self) -> None:
        if self._shut_down:
            return

        snapshot = self._snapshot()
        excluded = self._excluded

        seen: Set[str] = set()
        merged: List[ProcessDescriptor] = []
        visible: List[ProcessDescriptor] = []
        hidden: List[ProcessDescriptor] = []

        for app in snapshot:
            seen.add(app.id)
            if app.id in excluded:
                hidden.append(app)
            else:
                visible.append(app)
                merged.append(app)

        # Enabled apps that quit stay listed so they can be toggled off
        for app_id, record in self._enabled.items():
            if app_id not in seen and app_id not in excluded:
                merged.append(record.to_descriptor(is_running=False))

        # Hidden apps that quit stay listed so they can be shown again
        for app_id, record in self._excluded_info.items():
            if app_id not in seen and app_id in excluded:
                hidden.append(record.to_descriptor(is_running=False))

        merged.sort(key=running_first_key)
        visible.sort(key=alphabetical_key)
        hidden.sort(key=alphabetical_key)

        if merged != self._merged:
            self._merged = merged
            self._emit_view("merged_apps", merged)
        if visible != self._visible:
            self._visible = visible
            self._emit_view("visible_apps", visible)
        if hidden != self._hidden:
            self._hidden = hidden
            self._emit_view("hidden_apps", hidden)

        self._should_keep_awake = any(a.is_running and a.id in self._enabled for a in merged)
        self._controller.update(self._should_keep_awake, self._keep_display_on)
        self._sync_keep_awake_running()

    def _snapshot(self) -> List[ProcessDescriptor]:
        try:
            apps = self._enumerator.snapshot()
        except Exception as e:
            log.exception("Application enumeration failed")
            self._emit_error(str(e))
            return []
        return [a for a in unique_by_id(apps) if a.is_running]

    def _emit_view(self, name: str, apps: List[ProcessDescriptor]) -> None:
        self._emit({"type": "VIEW_CHANGED", "view": name, "apps": list(apps), "at": _now_iso()})

    def _sync_keep_awake_running(self) -> None:
        running = self._controller.is_running
        if running == self._keep_awake_running:
            return
        self._keep_awake_running = running
        self._emit({"type": "KEEP_AWAKE_CHANGED", "running": running, "at": _now_iso()})

    # ------------------------------------------------------------------
    # Hidden-app icon capture
    # ------------------------------------------------------------------

    def _capture_excluded_info(self, app: ProcessDescriptor) -> None:
        if self._background is None:
            self._store_excluded_info(app, self._encode_icon(app.icon))
            return

        future = self._background.submit(self._encode_icon, app.icon)

        def _done(f: Future) -> None:
            try:
                icon_data = f.result()
            except Exception:
                log.exception(f"Icon encoding failed for {app.id}")
                icon_data = b""
            self._post(lambda: self._store_excluded_info(app, icon_data))

        future.add_done_callback(_done)

    def _store_excluded_info(self, app: ProcessDescriptor, icon_data: bytes) -> None:
        if app.id not in self._excluded:
            # Shown again before the icon was ready
            return
        self._excluded_info[app.id] = AppRecord(id=app.id, name=app.display_name, icon_data=icon_data)
        self._persist_excluded_info()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        stored = self._settings.get_string_list(EXCLUDED_APPS_KEY)
        self._excluded = set(stored) if stored is not None else set(self._default_excluded)
        self._keep_display_on = self._settings.get_bool(KEEP_DISPLAY_ON_KEY, False)
        self._enabled = self._load_records(ENABLED_APPS_KEY)
        self._excluded_info = self._load_records(EXCLUDED_APP_INFO_KEY)
        log.info(
            f"Loaded {len(self._enabled)} enabled and {len(self._excluded)} hidden apps "
            f"(keep display on: {self._keep_display_on})"
        )

    def _load_records(self, key: str) -> Dict[str, AppRecord]:
        data = self._settings.get(key)
        if data is None:
            return {}
        try:
            return RECORD_MAP.validate_json(data)
        except (ValidationError, ValueError) as e:
            log.warning(f"Discarding unreadable {key}: {e}")
            return {}

    def _persist_enabled(self) -> None:
        self._settings.set(ENABLED_APPS_KEY, RECORD_MAP.dump_json(self._enabled))

    def _persist_excluded_info(self) -> None:
        self._settings.set(EXCLUDED_APP_INFO_KEY, RECORD_MAP.dump_json(self._excluded_info))
