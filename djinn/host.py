# SPDX-License-Identifier: LGPL-2.1-or-later

import os
from pathlib import Path

from djinn.log import die
from djinn.mounts import read_mounts


def running_in_wsl(osrelease: Path = Path("/proc/sys/kernel/osrelease")) -> bool:
    return "microsoft" in osrelease.read_text().lower()


def root_filesystem_type(mounts: Path = Path("/proc/self/mounts")) -> str:
    for target, fstype in read_mounts(mounts):
        if target == "/":
            return fstype

    return ""


def check_host(
    *,
    osrelease: Path = Path("/proc/sys/kernel/osrelease"),
    mounts: Path = Path("/proc/self/mounts"),
) -> None:
    if os.geteuid() != 0:
        die("djinn needs to be run as root", hint="Is the setuid bit set on the djinn executable?")

    if not running_in_wsl(osrelease):
        die("djinn must be run within WSL")

    # WSL1 serves the root filesystem with lxfs, which has no room for a bottle.
    if root_filesystem_type(mounts) == "lxfs":
        die("djinn only supports WSL2")
