# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import shutil
from pathlib import Path
from typing import Callable

from djinn.config import RuntimePaths
from djinn.log import complete_step, die
from djinn.mounts import bind_mount, is_mountpoint, unmount


def patch_hosts(text: str, old: str, new: str) -> str:
    """
    Replace every host name field equal to old with new. The first field of a line is the address
    and is never touched. Only exact field matches count, so "devbox" does not match "devboxmirror".
    Lines without a match (and comments) are passed through unchanged.
    """
    out = []

    for line in text.splitlines(keepends=True):
        fields = line.split()
        if not fields or fields[0].startswith("#") or old not in fields[1:]:
            out.append(line)
            continue

        address, *names = fields
        names = [new if name == old else name for name in names]
        out.append(f"{address}\t{' '.join(names)}\n")

    return "".join(out)


class IdentityStore:
    """
    Backs up the host's /etc/hostname and /etc/hosts and overlays virtualized copies of them using
    bind mounts. The backup files double as the marker that a bottle was initialized and are only
    ever written once, so that re-running init cannot clobber the true originals.
    """

    def __init__(
        self,
        paths: RuntimePaths,
        *,
        etc: Path = Path("/etc"),
        mounts: Path = Path("/proc/self/mounts"),
        bind: Callable[[Path, Path], None] = bind_mount,
        unbind: Callable[[Path], None] = unmount,
    ) -> None:
        self.paths = paths
        self.hostname = etc / "hostname"
        self.hosts = etc / "hosts"
        self.mounts = mounts
        self.bind = bind
        self.unbind = unbind

    @property
    def initialized(self) -> bool:
        return self.paths.hostname_backup.exists() or self.paths.hosts_backup.exists()

    def artifacts(self) -> list[Path]:
        return [
            self.paths.hostname_staging,
            self.paths.hostname_backup,
            self.paths.hosts_staging,
            self.paths.hosts_backup,
        ]

    def backup_hostname(self) -> str:
        if self.paths.hostname_backup.exists():
            logging.debug("Hostname already backed up, not overwriting")
            hostname = self.paths.hostname_backup.read_bytes()
        else:
            logging.debug(f"Backing up {self.hostname} to {self.paths.hostname_backup}")
            hostname = self.hostname.read_bytes()
            self.paths.hostname_backup.write_bytes(hostname)

        return hostname.decode().strip()

    def backup_hosts(self) -> None:
        if self.paths.hosts_backup.exists():
            logging.debug("Hosts already backed up, not overwriting")
            return

        logging.debug(f"Backing up {self.hosts} to {self.paths.hosts_backup}")
        self.paths.hosts_backup.write_bytes(self.hosts.read_bytes())

    def _bind(self, src: Path, dst: Path) -> None:
        if is_mountpoint(dst, self.mounts):
            # The staging file was rewritten in place, so the existing mount already shows the new contents.
            logging.debug(f"{dst} is already a mount point, not mounting {src} again")
            return

        try:
            self.bind(src, dst)
        except OSError as e:
            die(
                f"Failed to bind mount {src} over {dst}: {e}",
                hint="Run 'djinn cleanup' to undo a partially initialized bottle",
            )

    def install_virtual_hostname(self, new_name: str) -> None:
        with complete_step(f"Setting hostname via bind mount -> {new_name}"):
            self.paths.hostname_staging.write_text(f"{new_name}\n")
            self._bind(self.paths.hostname_staging, self.hostname)

    def install_virtual_hosts(self, old_token: str, new_token: str) -> None:
        with complete_step(f"Patching hosts: {old_token} -> {new_token}"):
            hosts = self.hosts.read_text()
            self.paths.hosts_staging.write_text(patch_hosts(hosts, old_token, new_token))
            self._bind(self.paths.hosts_staging, self.hosts)

    def teardown(self) -> None:
        with complete_step("Restoring hostname and hosts"):
            failed = []

            for target in (self.hostname, self.hosts):
                if not is_mountpoint(target, self.mounts):
                    logging.debug(f"{target} is not a mount point, not unmounting")
                    continue

                try:
                    self.unbind(target)
                except OSError as e:
                    logging.error(f"Failed to unmount {target}: {e}")
                    failed.append(target)

            if self.paths.hosts_backup.exists():
                shutil.copyfile(self.paths.hosts_backup, self.hosts)

            for path in self.artifacts():
                path.unlink(missing_ok=True)

        if failed:
            die(
                f"Failed to unmount {', '.join(str(p) for p in failed)}",
                hint="The backups were removed, unmount the remaining paths manually",
            )
