import os
import plistlib

import psutil
import pytest

from decaf.core.monitor import enumerator as enumerator_mod
from decaf.core.monitor.enumerator import PsutilApplicationEnumerator


class FakeProc:
    def __init__(self, **info) -> None:
        self._info = info

    @property
    def info(self):
        if self._info.get("gone"):
            raise psutil.NoSuchProcess(pid=self._info.get("pid", 0))
        return self._info


@pytest.fixture
def processes(monkeypatch):
    procs = []

    def process_iter(attrs=None):
        return iter(procs)

    monkeypatch.setattr(enumerator_mod.psutil, "process_iter", process_iter)
    monkeypatch.setattr(enumerator_mod.getpass, "getuser", lambda: "alice")
    return procs


def test_linux_reports_user_gui_processes(processes):
    processes.extend([
        FakeProc(pid=10, name="gedit", exe="/usr/bin/gedit", username="alice", terminal=None),
        FakeProc(pid=11, name="bash", exe="/usr/bin/bash", username="alice", terminal="/dev/pts/0"),
        FakeProc(pid=12, name="sshd", exe="/usr/sbin/sshd", username="root", terminal=None),
        FakeProc(pid=13, name="kworker", exe=None, username="root", terminal=None),
        FakeProc(pid=14, name="gedit", exe="/usr/bin/gedit", username="alice", terminal=None),
        FakeProc(pid=15, gone=True),
        FakeProc(pid=os.getpid(), name="python", exe="/usr/bin/python3", username="alice", terminal=None),
    ])

    apps = PsutilApplicationEnumerator(system="Linux").snapshot()

    assert [(a.id, a.display_name, a.is_running) for a in apps] == [("gedit", "gedit", True)]


def test_windows_matches_domain_user(processes):
    processes.extend([
        FakeProc(pid=20, name="Notepad.exe", exe="/apps/Notepad.exe", username="HOST\\alice"),
        FakeProc(pid=21, name="svchost.exe", exe="/apps/svchost.exe", username="NT AUTHORITY\\SYSTEM"),
    ])

    apps = PsutilApplicationEnumerator(system="Windows", icon_loader=lambda exe: b"ico").snapshot()

    assert [(a.id, a.display_name) for a in apps] == [("notepad.exe", "Notepad")]
    assert apps[0].icon == b"ico"


def _bundle(root, name, plist):
    bundle = root / f"{name}.app"
    (bundle / "Contents" / "MacOS").mkdir(parents=True)
    (bundle / "Contents" / "Resources").mkdir()
    with (bundle / "Contents" / "Info.plist").open("wb") as fh:
        plistlib.dump(plist, fh)
    return bundle


def test_macos_reads_bundle_metadata(processes, tmp_path):
    safari = _bundle(tmp_path, "Safari", {
        "CFBundleIdentifier": "com.apple.Safari",
        "CFBundleName": "Safari",
        "CFBundleIconFile": "AppIcon",
    })
    (safari / "Contents" / "Resources" / "AppIcon.icns").write_bytes(b"icns-data")
    agent = _bundle(tmp_path, "Agent", {"CFBundleIdentifier": "com.example.agent", "LSUIElement": True})

    processes.extend([
        FakeProc(pid=30, name="Safari", exe=str(safari / "Contents" / "MacOS" / "Safari")),
        FakeProc(pid=31, name="Agent", exe=str(agent / "Contents" / "MacOS" / "Agent")),
        FakeProc(pid=32, name="launchd", exe="/sbin/launchd"),
    ])

    apps = PsutilApplicationEnumerator(system="Darwin").snapshot()

    assert [(a.id, a.display_name) for a in apps] == [("com.apple.Safari", "Safari")]
    assert apps[0].icon == b"icns-data"


def test_macos_bundle_without_plist_uses_bundle_name(processes, tmp_path):
    exe = tmp_path / "Tool.app" / "Contents" / "MacOS" / "tool"
    processes.append(FakeProc(pid=40, name="tool", exe=str(exe)))

    apps = PsutilApplicationEnumerator(system="Darwin").snapshot()

    assert [(a.id, a.display_name, a.icon) for a in apps] == [("Tool", "Tool", b"")]


def test_macos_malformed_plist_does_not_hide_other_apps(processes, tmp_path):
    good = _bundle(tmp_path, "Good", {"CFBundleIdentifier": "com.good", "CFBundleName": "Good"})
    broken = tmp_path / "Broken.app"
    (broken / "Contents" / "MacOS").mkdir(parents=True)
    (broken / "Contents" / "Info.plist").write_bytes(b"<?xml version='1.0'?><plist><dict><key>CFBundle")

    processes.extend([
        FakeProc(pid=50, name="Broken", exe=str(broken / "Contents" / "MacOS" / "Broken")),
        FakeProc(pid=51, name="Good", exe=str(good / "Contents" / "MacOS" / "Good")),
    ])

    apps = PsutilApplicationEnumerator(system="Darwin").snapshot()

    assert [(a.id, a.display_name) for a in apps] == [("Broken", "Broken"), ("com.good", "Good")]


def test_macos_bundle_metadata_read_once_while_running(processes, tmp_path, monkeypatch):
    safari = _bundle(tmp_path, "Safari", {"CFBundleIdentifier": "com.apple.Safari"})
    processes.append(FakeProc(pid=60, name="Safari", exe=str(safari / "Contents" / "MacOS" / "Safari")))

    plist_loads = []
    real_load = enumerator_mod.plistlib.load
    monkeypatch.setattr(enumerator_mod.plistlib, "load", lambda fh: plist_loads.append(1) or real_load(fh))
    icon_loads = []
    enumerator = PsutilApplicationEnumerator(system="Darwin", icon_loader=lambda path: icon_loads.append(path) or b"i")

    first = enumerator.snapshot()
    second = enumerator.snapshot()

    assert first == second
    assert [a.id for a in second] == ["com.apple.Safari"]
    assert len(plist_loads) == 1
    assert icon_loads == [str(safari)]


def test_cached_metadata_dropped_once_app_quits(processes, tmp_path):
    icon_loads = []
    enumerator = PsutilApplicationEnumerator(system="Linux", icon_loader=lambda exe: icon_loads.append(exe) or b"i")
    gedit = FakeProc(pid=70, name="gedit", exe="/usr/bin/gedit", username="alice", terminal=None)

    processes.append(gedit)
    enumerator.snapshot()
    enumerator.snapshot()
    processes.clear()
    assert enumerator.snapshot() == []
    processes.append(gedit)
    enumerator.snapshot()

    assert icon_loads == ["/usr/bin/gedit", "/usr/bin/gedit"]
