# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import time
from typing import Any, Callable, Optional, Protocol

import psutil

from djinn.log import die

POLL_INTERVAL = 0.5


class BottleTimeout(Exception):
    pass


class ProcessLocator(Protocol):
    def locate_init(self) -> int: ...


class PsutilLocator:
    """
    Finds the bottle's init by scanning the process table. Only root-owned processes with exactly
    the init's name count, and among those the oldest one wins, so that a short-lived process
    sharing the name cannot be mistaken for the real init.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def locate_init(self) -> int:
        candidates = []

        try:
            for proc in psutil.process_iter(attrs=["pid", "name", "uids", "create_time"]):
                if proc.info["name"] != self.name or proc.info["uids"] is None:
                    continue
                if proc.info["uids"].real != 0:
                    continue

                candidates.append(proc.info)
        except (psutil.Error, OSError) as e:
            die(f"Failed to enumerate processes: {e}")

        if not candidates:
            return 0

        return int(min(candidates, key=lambda p: p["create_time"] or 0)["pid"])


def poll(
    locator: ProcessLocator,
    done: Callable[[int], bool],
    *,
    timeout: Optional[float],
    interval: float = POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    deadline = clock() + timeout if timeout is not None else None

    while not done(pid := locator.locate_init()):
        if deadline is not None and clock() >= deadline:
            raise BottleTimeout(f"Gave up after {timeout:g}s")

        logging.debug(f"Init pid is {pid}, waiting {interval:g}s")
        sleep(interval)

    return pid


def wait_for_init(locator: ProcessLocator, *, timeout: Optional[float], **kwargs: Any) -> int:
    return poll(locator, lambda pid: pid != 0, timeout=timeout, **kwargs)


def wait_for_exit(locator: ProcessLocator, *, timeout: Optional[float], **kwargs: Any) -> None:
    poll(locator, lambda pid: pid == 0, timeout=timeout, **kwargs)
