from __future__ import annotations

import locale
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Literal

from pydantic import BaseModel, ConfigDict, TypeAdapter

KeepAwakeStatus = Literal["STOPPED", "RUNNING"]


@dataclass(frozen=True)
class ProcessDescriptor:
    """A running (or remembered) application. The icon is not part of equality."""
    id: str
    display_name: str
    icon: bytes = field(default=b"", compare=False, repr=False)
    is_running: bool = True

    def as_not_running(self) -> ProcessDescriptor:
        return replace(self, is_running=False)


class AppRecord(BaseModel):
    """
    Persisted snapshot of an application: used for both enabled apps
    (kept after the app quits) and hidden apps that are no longer running.
    """
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    id: str
    name: str
    icon_data: bytes = b""

    def to_descriptor(self, is_running: bool = False) -> ProcessDescriptor:
        return ProcessDescriptor(id=self.id, display_name=self.name, icon=self.icon_data, is_running=is_running)


EnabledRecord = AppRecord
ExcludedInfoRecord = AppRecord

RECORD_MAP = TypeAdapter(Dict[str, AppRecord])


def collation_key(name: str) -> str:
    # Case-insensitive, honours LC_COLLATE installed by the entry point.
    return locale.strxfrm(name.casefold())


def alphabetical_key(app: ProcessDescriptor) -> str:
    return collation_key(app.display_name)


def running_first_key(app: ProcessDescriptor) -> tuple[bool, str]:
    return (not app.is_running, collation_key(app.display_name))


def unique_by_id(apps: Iterable[ProcessDescriptor]) -> List[ProcessDescriptor]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    out: List[ProcessDescriptor] = []
    for app in apps:
        if app.id in seen:
            continue
        seen.add(app.id)
        out.append(app)
    return out
