# SPDX-License-Identifier: LGPL-2.1-or-later

from collections import namedtuple
from typing import Any, Optional

import psutil
import pytest

from djinn.process import BottleTimeout, PsutilLocator, poll, wait_for_exit, wait_for_init

from . import FakeLocator

Uids = namedtuple("Uids", ["real", "effective", "saved"])


class FakeProcess:
    def __init__(self, pid: int, name: str, uid: Optional[int], create_time: float) -> None:
        self.info = {
            "pid": pid,
            "name": name,
            "uids": Uids(uid, uid, uid) if uid is not None else None,
            "create_time": create_time,
        }


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, interval: float) -> None:
        self.sleeps.append(interval)
        self.now += interval


def fake_process_table(monkeypatch: pytest.MonkeyPatch, *procs: FakeProcess) -> None:
    def process_iter(attrs: Any = None) -> Any:
        return iter(procs)

    monkeypatch.setattr(psutil, "process_iter", process_iter)


def test_locate_init_none(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_process_table(monkeypatch, FakeProcess(1, "init", 0, 1.0), FakeProcess(300, "bash", 1000, 5.0))
    assert PsutilLocator("systemd").locate_init() == 0


def test_locate_init_picks_oldest_root_process(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_process_table(
        monkeypatch,
        FakeProcess(1, "init", 0, 1.0),
        FakeProcess(500, "systemd", 1000, 2.0),
        FakeProcess(420, "systemd", 0, 20.0),
        FakeProcess(410, "systemd", 0, 10.0),
        FakeProcess(430, "systemd-journald", 0, 5.0),
        FakeProcess(440, "systemd", None, 3.0),
    )
    assert PsutilLocator("systemd").locate_init() == 410


def test_locate_init_enumeration_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def process_iter(attrs: Any = None) -> Any:
        raise psutil.AccessDenied()

    monkeypatch.setattr(psutil, "process_iter", process_iter)

    with pytest.raises(SystemExit):
        PsutilLocator("systemd").locate_init()


def test_wait_for_init() -> None:
    clock = FakeClock()
    locator = FakeLocator(0, 0, 0, 4242)

    assert wait_for_init(locator, timeout=None, sleep=clock.sleep, clock=clock) == 4242
    assert clock.sleeps == [0.5, 0.5, 0.5]


def test_wait_for_exit() -> None:
    clock = FakeClock()
    locator = FakeLocator(4242, 4242, 0)

    wait_for_exit(locator, timeout=10, sleep=clock.sleep, clock=clock)
    assert locator.calls == 3


def test_poll_times_out() -> None:
    clock = FakeClock()
    locator = FakeLocator(0)

    with pytest.raises(BottleTimeout):
        wait_for_init(locator, timeout=2, sleep=clock.sleep, clock=clock)

    assert clock.now == 2
    assert len(clock.sleeps) == 4


def test_poll_without_timeout_keeps_waiting() -> None:
    clock = FakeClock()
    locator = FakeLocator(*([0] * 1000), 7)

    assert poll(locator, lambda pid: pid != 0, timeout=None, sleep=clock.sleep, clock=clock) == 7
    assert len(clock.sleeps) == 1000
