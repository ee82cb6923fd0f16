# SPDX-License-Identifier: LGPL-2.1-or-later
# The version is obtained from the environment variable DJINN_VERSION if set, otherwise from the Python
# distribution's metadata of the installed package. If neither is available, it is set to "0".

import importlib.metadata
import logging
import os
from importlib.metadata import PackageNotFoundError
from typing import Optional


def version_from_metadata() -> Optional[str]:
    try:
        return importlib.metadata.version("djinn")
    except PackageNotFoundError:
        return None


def version_fallback() -> str:
    logging.warning("Unable to determine djinn version")
    return "0"


__version__ = os.getenv("DJINN_VERSION") or version_from_metadata() or version_fallback()
