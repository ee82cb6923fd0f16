# SPDX-License-Identifier: LGPL-2.1-or-later

import errno
import os
from pathlib import Path

HOSTS = """\
127.0.0.1\tlocalhost
127.0.1.1 devbox
10.0.0.5 devboxmirror

# The following lines are desirable for IPv6 capable hosts
::1     ip6-localhost ip6-loopback
"""


class FakeLocator:
    """Hands out the given pids in order and keeps repeating the last one."""

    def __init__(self, *pids: int) -> None:
        self.pids = list(pids)
        self.calls = 0

    def locate_init(self) -> int:
        self.calls += 1
        if len(self.pids) > 1:
            return self.pids.pop(0)
        return self.pids[0]


class FakeMounts:
    """
    Emulates bind mounts without privileges: the target temporarily takes over the contents of the
    source and an entry is added to a fake mounts table.
    """

    def __init__(self, table: Path) -> None:
        self.table = table
        self.table.write_text("/dev/sdc / ext4 rw,relatime 0 0\n")
        self.shadowed: dict[Path, bytes] = {}
        self.failing: set[Path] = set()
        self.binds: list[tuple[Path, Path]] = []

    def bind(self, src: Path, dst: Path) -> None:
        if dst in self.failing:
            raise OSError(errno.EPERM, os.strerror(errno.EPERM), os.fspath(dst))

        self.shadowed[dst] = dst.read_bytes()
        dst.write_bytes(src.read_bytes())
        with self.table.open("a") as f:
            f.write(f"tmpfs {dst} tmpfs rw 0 0\n")
        self.binds.append((src, dst))

    def unbind(self, dst: Path) -> None:
        if dst in self.failing or dst not in self.shadowed:
            raise OSError(errno.EINVAL, os.strerror(errno.EINVAL), os.fspath(dst))

        dst.write_bytes(self.shadowed.pop(dst))
        lines = [line for line in self.table.read_text().splitlines(keepends=True) if line.split()[1] != str(dst)]
        self.table.write_text("".join(lines))
