# SPDX-License-Identifier: LGPL-2.1-or-later

import signal
import sys
from types import FrameType
from typing import Optional

from djinn import run_verb
from djinn.config import parse_config
from djinn.log import log_setup, log_verbose
from djinn.run import uncaught_exception_handler


def onsigterm(signal: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt()


@uncaught_exception_handler()
def main() -> None:
    signal.signal(signal.SIGTERM, onsigterm)

    log_setup()

    args, config = parse_config(sys.argv[1:])
    log_verbose(args.verbose)

    sys.exit(run_verb(args, config))


if __name__ == "__main__":
    main()
