from __future__ import annotations

import platform
from typing import List, Optional
from pydantic import BaseModel, Field


def default_file_manager_id(system: Optional[str] = None) -> str:
    system = system or platform.system()
    if system == "Darwin":
        return "com.apple.finder"
    if system == "Windows":
        return "explorer.exe"
    return "nautilus"


class AppConfig(BaseModel):
    poll_interval_ms: int = 1000
    keep_awake_executable: Optional[str] = None  # None: platform default helper
    bind_helper_to_app: bool = True
    default_excluded_apps: List[str] = Field(default_factory=lambda: [default_file_manager_id()])
    log_level: str = "INFO"

    def to_loop_config(self) -> dict:
        return {
            "interval_ms": self.poll_interval_ms,
        }
