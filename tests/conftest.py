from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional

import pytest

from decaf.core.engine.reconciler import ReconciliationEngine
from decaf.core.keepawake.controller import KeepAwakeController
from decaf.core.keepawake.helper import CaffeinateCommand
from decaf.core.monitor.types import ProcessDescriptor
from decaf.shared.settings import InMemorySettingsStore

_pids = itertools.count(4000)


class FakeProcess:
    def __init__(self, argv, **kwargs) -> None:
        self.args = list(argv)
        self.kwargs = kwargs
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.terminate_calls = 0
        self._exited = threading.Event()

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        self._exited.wait(timeout)
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        self.exit(-15)

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self._exited.set()


class FakePopen:
    def __init__(self) -> None:
        self.spawned: List[FakeProcess] = []
        self.error: Optional[Exception] = None

    def __call__(self, argv, **kwargs) -> FakeProcess:
        if self.error is not None:
            raise self.error
        proc = FakeProcess(argv, **kwargs)
        self.spawned.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.spawned[-1]


class FakeEnumerator:
    def __init__(self, apps: Optional[List[ProcessDescriptor]] = None) -> None:
        self.apps = list(apps or [])
        self.error: Optional[Exception] = None

    def snapshot(self) -> List[ProcessDescriptor]:
        if self.error is not None:
            raise self.error
        return list(self.apps)


class DeferredExecutor:
    """Holds submitted work until run_all() is called."""

    def __init__(self) -> None:
        self._jobs: List[tuple] = []

    def submit(self, fn: Callable, *args) -> Future:
        future: Future = Future()
        self._jobs.append((future, fn, args))
        return future

    @property
    def pending(self) -> int:
        return len(self._jobs)

    def run_all(self) -> None:
        jobs, self._jobs = self._jobs, []
        for future, fn, args in jobs:
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)


def app(app_id: str, name: str, running: bool = True, icon: bytes = b"icon") -> ProcessDescriptor:
    return ProcessDescriptor(id=app_id, display_name=name, icon=icon, is_running=running)


def fake_png(icon: bytes) -> bytes:
    return b"png:" + icon


@pytest.fixture
def popen() -> FakePopen:
    return FakePopen()


@pytest.fixture
def controller(popen: FakePopen) -> KeepAwakeController:
    return KeepAwakeController(command=CaffeinateCommand(), popen=popen)


@pytest.fixture
def enumerator() -> FakeEnumerator:
    return FakeEnumerator()


@pytest.fixture
def settings() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def make_engine(settings, enumerator, controller):
    def _make(**kwargs) -> ReconciliationEngine:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("default_excluded", [])
        kwargs.setdefault("icon_encoder", fake_png)
        return ReconciliationEngine(enumerator=enumerator, controller=controller, **kwargs)

    return _make
