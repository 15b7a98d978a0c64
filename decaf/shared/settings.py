"""
Key/value settings storage used by the reconciliation engine.

Values are opaque byte blobs, string lists or booleans. Writes are
synchronous and last-write-wins; nothing here is transactional.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from decaf.shared.paths import ensure_app_dirs, settings_path

log = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def get_string_list(self, key: str) -> Optional[List[str]]:
        ...

    def set_string_list(self, key: str, values: List[str]) -> None:
        ...

    def get_bool(self, key: str, default: bool = False) -> bool:
        ...

    def set_bool(self, key: str, value: bool) -> None:
        ...


class InMemorySettingsStore:
    """Non-durable settings. Values of the wrong type read as absent."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self._values[key] = _encode_value(value)

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            raw = self._values.get(key)
        if not isinstance(raw, str):
            return None
        try:
            return base64.b64decode(raw.encode("ascii"), validate=True)
        except (binascii.Error, ValueError):
            log.warning(f"Setting {key!r} is not valid base64, ignoring")
            return None

    def set(self, key: str, value: bytes) -> None:
        self._put(key, _encode_value(value))

    def get_string_list(self, key: str) -> Optional[List[str]]:
        with self._lock:
            raw = self._values.get(key)
        if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
            return None
        return list(raw)

    def set_string_list(self, key: str, values: List[str]) -> None:
        self._put(key, [str(v) for v in values])

    def get_bool(self, key: str, default: bool = False) -> bool:
        with self._lock:
            raw = self._values.get(key)
        return raw if isinstance(raw, bool) else default

    def set_bool(self, key: str, value: bool) -> None:
        self._put(key, bool(value))

    def _put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            snapshot = dict(self._values)
        self._commit(snapshot)

    def _commit(self, values: Dict[str, Any]) -> None:
        pass


class JsonSettingsStore(InMemorySettingsStore):
    """Settings persisted as a single JSON document, rewritten on every set."""

    def __init__(self, path: Optional[Path] = None) -> None:
        super().__init__()
        if path is None:
            ensure_app_dirs()
            path = settings_path()
        self._path = Path(path)
        self._values = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Could not read settings from {self._path}: {e}, starting empty")
            return {}
        if not isinstance(data, dict):
            log.warning(f"Settings file {self._path} is not an object, starting empty")
            return {}
        return data

    def _commit(self, values: Dict[str, Any]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(values, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError:
            log.exception(f"Failed to write settings to {self._path}")

    def path(self) -> str:
        return str(self._path)


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return value
