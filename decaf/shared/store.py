from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from decaf.shared.config import AppConfig
from decaf.shared.paths import config_path, ensure_app_dirs

log = logging.getLogger(__name__)


class ConfigStore:
    """
    config.json next to the settings file. A missing file is created with
    defaults; an unusable one is moved aside to config.json.bak first so a
    hand edit is never silently lost.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        if path is None:
            ensure_app_dirs()
            path = config_path()
        self._path = Path(path)

    def load(self) -> AppConfig:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            log.info(f"No config at {self._path}, writing defaults")
            return self._reset()
        except OSError as e:
            log.warning(f"Cannot read config {self._path}: {e}, using defaults")
            return AppConfig()

        try:
            return AppConfig.model_validate_json(raw)
        except ValidationError as e:
            log.warning(f"Config {self._path} rejected ({e.error_count()} errors), restoring defaults")
        self._backup()
        return self._reset()

    def save(self, cfg: AppConfig) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(cfg.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    def backup_path(self) -> Path:
        return self._path.with_name(self._path.name + ".bak")

    def path(self) -> str:
        return str(self._path)

    def _reset(self) -> AppConfig:
        cfg = AppConfig()
        try:
            self.save(cfg)
        except OSError:
            log.exception(f"Failed to write default config to {self._path}")
        return cfg

    def _backup(self) -> None:
        try:
            os.replace(self._path, self.backup_path())
        except OSError as e:
            log.warning(f"Could not keep a copy of the rejected config: {e}")
