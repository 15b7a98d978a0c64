"""
Command lines for the keep-awake helper process.

The helper prevents sleep for as long as it is alive. Each platform has a
fixed executable and two argument forms: idle/disk sleep only, or idle
sleep plus display sleep. When bound to a pid the helper exits on its own
once that process is gone, so a crashed Decaf never leaves it behind.
"""

from __future__ import annotations

import platform
from typing import List, Optional, Protocol


class HelperCommand(Protocol):
    executable: str

    def argv(self, keep_display_on: bool, pid: Optional[int]) -> List[str]:
        ...


class CaffeinateCommand:
    """macOS `caffeinate`: -i idle sleep, -d display sleep, -w wait for pid."""

    def __init__(self, executable: str = "/usr/bin/caffeinate") -> None:
        self.executable = executable

    def argv(self, keep_display_on: bool, pid: Optional[int]) -> List[str]:
        flags = "-di" if keep_display_on else "-i"
        if pid is None:
            return [self.executable, flags]
        return [self.executable, flags + "w", str(pid)]


class SystemdInhibitCommand:
    """Linux `systemd-inhibit` holding a block lock around a waiting child."""

    def __init__(self, executable: str = "/usr/bin/systemd-inhibit", who: str = "Decaf") -> None:
        self.executable = executable
        self._who = who

    def argv(self, keep_display_on: bool, pid: Optional[int]) -> List[str]:
        what = "idle:sleep" if keep_display_on else "sleep"
        if pid is None:
            hold = ["sleep", "infinity"]
        else:
            hold = ["tail", f"--pid={pid}", "-f", "/dev/null"]
        return [
            self.executable,
            f"--what={what}",
            f"--who={self._who}",
            "--why=Keeping selected applications awake",
            "--mode=block",
            *hold,
        ]


def default_helper_command(executable: Optional[str] = None, system: Optional[str] = None) -> HelperCommand:
    system = system or platform.system()
    if system == "Linux":
        return SystemdInhibitCommand(executable) if executable else SystemdInhibitCommand()
    # caffeinate is the reference helper; elsewhere an override path is expected
    return CaffeinateCommand(executable) if executable else CaffeinateCommand()
