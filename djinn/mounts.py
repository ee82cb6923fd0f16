# SPDX-License-Identifier: LGPL-2.1-or-later

import ctypes
import os
from collections.abc import Iterator
from pathlib import Path

from djinn.util import PathString

# The following constants are taken from the Linux kernel headers.
MS_BIND = 4096

libc = ctypes.CDLL(None, use_errno=True)

libc.mount.argtypes = (ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_ulong, ctypes.c_char_p)
libc.umount2.argtypes = (ctypes.c_char_p, ctypes.c_int)


def oserror(filename: str = "") -> None:
    errno = ctypes.get_errno()
    raise OSError(errno, os.strerror(errno), filename or None)


def mount(src: str, dst: str, type: str, flags: int, options: str) -> None:
    srcb = src.encode() if src else None
    typeb = type.encode() if type else None
    optionsb = options.encode() if options else None
    if libc.mount(srcb, dst.encode(), typeb, flags, optionsb) < 0:
        oserror(dst)


def umount2(path: str, flags: int = 0) -> None:
    if libc.umount2(path.encode(), flags) < 0:
        oserror(path)


def bind_mount(src: PathString, dst: PathString) -> None:
    mount(os.fspath(src), os.fspath(dst), "", MS_BIND, "")


def unmount(path: PathString) -> None:
    umount2(os.fspath(path))


def read_mounts(path: Path = Path("/proc/self/mounts")) -> Iterator[tuple[str, str]]:
    """Yield (mount point, filesystem type) for every entry of a mounts table."""
    for line in path.read_text().splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue

        # Mount points with whitespace are octal-escaped in the mounts table.
        yield fields[1].replace("\\040", " "), fields[2]


def is_mountpoint(path: PathString, mounts: Path = Path("/proc/self/mounts")) -> bool:
    return any(target == os.fspath(path) for target, _ in read_mounts(mounts))
