"""
Running-application enumeration using psutil.

Only user-facing applications are reported: on macOS, processes that run
from an application bundle; elsewhere, processes of the current user that
have an executable and are not attached to a terminal.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import plistlib
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol
from xml.parsers.expat import ExpatError

import psutil

from .types import ProcessDescriptor, unique_by_id

log = logging.getLogger(__name__)

_BUNDLE_MARKER = ".app/Contents/MacOS/"


class ApplicationEnumerator(Protocol):
    def snapshot(self) -> List[ProcessDescriptor]:
        """Current user-facing running applications, one per id."""
        ...


class PsutilApplicationEnumerator:
    def __init__(self, system: Optional[str] = None, icon_loader: Optional[Callable[[str], bytes]] = None) -> None:
        self._system = system or platform.system()
        self._icon_loader = icon_loader
        self._own_pid = os.getpid()
        try:
            self._user = getpass.getuser()
        except (KeyError, OSError):
            self._user = None
        # Metadata per bundle or executable, kept while the app keeps running
        self._bundles: Dict[str, Optional[ProcessDescriptor]] = {}
        self._icons: Dict[str, bytes] = {}
        self._seen: set = set()
        self._attrs = ["pid", "name", "exe", "username"]
        if self._system != "Windows":
            self._attrs.append("terminal")

    def snapshot(self) -> List[ProcessDescriptor]:
        self._seen = set()
        apps = unique_by_id(self._iter_apps())
        self._bundles = {k: v for k, v in self._bundles.items() if k in self._seen}
        self._icons = {k: v for k, v in self._icons.items() if k in self._seen}
        return apps

    def _iter_apps(self) -> Iterable[ProcessDescriptor]:
        for p in psutil.process_iter(attrs=self._attrs):
            try:
                info = p.info
                if info.get("pid") == self._own_pid:
                    continue
                app = self._describe(info)
                if app is not None:
                    yield app
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

    def _describe(self, info: dict) -> Optional[ProcessDescriptor]:
        exe = info.get("exe")
        if not exe:
            return None
        if self._system == "Darwin":
            return self._describe_bundle(str(exe))
        return self._describe_executable(info, str(exe))

    def _describe_executable(self, info: dict, exe: str) -> Optional[ProcessDescriptor]:
        if info.get("terminal"):
            return None
        if self._user and not _same_user(info.get("username"), self._user):
            return None
        name = info.get("name") or os.path.basename(exe)
        self._seen.add(exe)
        if exe not in self._icons:
            self._icons[exe] = self._icon_loader(exe) if self._icon_loader else b""
        icon = self._icons[exe]
        return ProcessDescriptor(
            id=str(name).lower(),
            display_name=Path(exe).stem or str(name),
            icon=icon,
            is_running=True,
        )

    def _describe_bundle(self, exe: str) -> Optional[ProcessDescriptor]:
        idx = exe.find(_BUNDLE_MARKER)
        if idx < 0:
            return None
        key = exe[: idx + len(".app")]
        self._seen.add(key)
        if key not in self._bundles:
            self._bundles[key] = self._load_bundle(Path(key))
        return self._bundles[key]

    def _load_bundle(self, bundle: Path) -> Optional[ProcessDescriptor]:
        plist = _read_info_plist(bundle)
        if plist.get("LSUIElement") in (True, "1") or plist.get("LSBackgroundOnly") in (True, "1"):
            return None
        app_id = plist.get("CFBundleIdentifier") or bundle.stem
        name = plist.get("CFBundleDisplayName") or plist.get("CFBundleName") or bundle.stem
        if self._icon_loader:
            icon = self._icon_loader(str(bundle))
        else:
            icon = _read_bundle_icon(bundle, plist)
        return ProcessDescriptor(id=str(app_id), display_name=str(name), icon=icon, is_running=True)


def _same_user(owner: Optional[str], user: str) -> bool:
    if not owner:
        return False
    # Windows reports DOMAIN\user
    return owner.rsplit("\\", 1)[-1].lower() == user.lower()


def _read_info_plist(bundle: Path) -> dict:
    path = bundle / "Contents" / "Info.plist"
    try:
        with path.open("rb") as fh:
            data = plistlib.load(fh)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _read_bundle_icon(bundle: Path, plist: dict) -> bytes:
    icon_file = plist.get("CFBundleIconFile")
    if not icon_file:
        return b""
    path = bundle / "Contents" / "Resources" / str(icon_file)
    if not path.suffix:
        path = path.with_suffix(".icns")
    try:
        return path.read_bytes()
    except OSError:
        return b""
