# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import dataclasses
import logging
import os
import pwd
from collections.abc import Iterator

from djinn.log import die


@dataclasses.dataclass(frozen=True)
class InvokingUser:
    uid: int
    gid: int
    name: str

    @classmethod
    def capture(cls) -> "InvokingUser":
        """
        Record who invoked us. This has to happen before any privilege transition, since djinn is
        installed setuid root and the real uid/gid are the only record of the invoking user.
        """
        uid = os.getuid()
        return cls(uid=uid, gid=os.getgid(), name=user_name(uid))


def user_name(uid: int) -> str:
    # The environment belongs to the unprivileged caller, only the password database counts.
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        if uid == 0:
            return "root"

        die(f"Could not find user name for UID {uid}")


def drop_to(uid: int, gid: int) -> None:
    logging.debug(f"Jumping {os.getuid()}:{os.getgid()} -> {uid}:{gid}")

    # The gid has to change first, once the uid is gone we may no longer be allowed to change it.
    try:
        os.setresgid(gid, gid, gid)
    except OSError as e:
        die(f"Failed to set gid {gid}: {e}")

    try:
        os.setresuid(uid, uid, uid)
    except OSError as e:
        die(f"Failed to set uid {uid}: {e}")


@contextlib.contextmanager
def acquire_root(user: InvokingUser) -> Iterator[None]:
    drop_to(0, 0)
    try:
        yield
    finally:
        drop_to(user.uid, user.gid)
