# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from djinn.log import complete_step

# Variables that only exist in the host session and would be lost inside the bottle.
ENVARS = ("WSL_DISTRO_NAME", "WSL_INTEROP", "WSLENV")
MARKER = ("INSIDE_DJINN", "true")


class EnvironmentBridge:
    def __init__(self, path: Path, environ: Optional[Mapping[str, str]] = None) -> None:
        self.path = path
        self.environ = environ if environ is not None else os.environ

    def save(self) -> None:
        with complete_step("Saving WSL environment"):
            lines = [f"{MARKER[0]}={MARKER[1]}"]

            for key in ENVARS:
                if (value := self.environ.get(key)) is None:
                    logging.warning(f"Missing variable {key}, not saving it")
                    continue

                lines.append(f"{key}={value}")

            self.path.write_text("".join(f"{line}\n" for line in lines))

    def load(self) -> tuple[dict[str, str], str]:
        """
        Returns the variables to pass into the bottle along with their names joined by commas, which
        is the form runuser -w expects. TERM always comes from the current session, never from the
        saved file, as it depends on the terminal we're invoked from.
        """
        entries = {"TERM": self.environ.get("TERM", "vt220")}

        try:
            data = self.path.read_text()
        except FileNotFoundError:
            data = ""

        if not data.strip():
            logging.warning(f"Missing WSL environment in {self.path}")

        for line in data.splitlines():
            if not line:
                continue

            key, sep, value = line.partition("=")
            if not sep:
                logging.warning(f"{self.path}: ignoring malformed line {line!r}")
                continue
            if key == "TERM":
                continue

            entries[key] = value

        return entries, ",".join(entries)

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)
