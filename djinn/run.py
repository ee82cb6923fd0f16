# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Callable, NoReturn, Optional

from djinn.log import ARG_VERBOSE, die
from djinn.util import _FILE, PathString

# These types are only generic during type checking and not at runtime, leading
# to a TypeError during compilation.
# Let's be as strict as we can with the description for the usage we have.
if TYPE_CHECKING:
    CompletedProcess = subprocess.CompletedProcess[str]
    Popen = subprocess.Popen[str]
else:
    CompletedProcess = subprocess.CompletedProcess
    Popen = subprocess.Popen


def ensure_exc_info() -> tuple[type[BaseException], BaseException, TracebackType]:
    exctype, exc, tb = sys.exc_info()
    assert exctype
    assert exc
    assert tb
    return (exctype, exc, tb)


@contextlib.contextmanager
def uncaught_exception_handler(exit: Callable[[int], NoReturn] = sys.exit) -> Iterator[None]:
    rc = 0
    try:
        yield
    except SystemExit as e:
        rc = e.code if isinstance(e.code, int) else 1

        if ARG_VERBOSE.get() and rc != 0:
            sys.excepthook(*ensure_exc_info())
    except KeyboardInterrupt:
        rc = 1

        if ARG_VERBOSE.get():
            sys.excepthook(*ensure_exc_info())
        else:
            logging.error("Interrupted")
    except subprocess.CalledProcessError as e:
        # We always log when subprocess.CalledProcessError is raised, so we don't log again here.
        rc = e.returncode

        if ARG_VERBOSE.get():
            sys.excepthook(*ensure_exc_info())
    except BaseException:
        sys.excepthook(*ensure_exc_info())
        rc = 1
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        exit(rc)


def log_process_failure(cmdline: Sequence[str], returncode: int) -> None:
    if -returncode in (signal.SIGINT, signal.SIGTERM):
        logging.error(f"Interrupted by {signal.Signals(-returncode).name} signal")
    elif returncode < 0:
        logging.error(f'"{shlex.join(cmdline)}" was killed by {signal.Signals(-returncode).name} signal.')
    elif returncode == 127:
        logging.error(f"{cmdline[0]} not found.")
    else:
        logging.error(f'"{shlex.join(cmdline)}" returned non-zero exit code {returncode}.')


def run(
    cmdline: Sequence[PathString],
    check: bool = True,
    stdin: _FILE = None,
    stdout: _FILE = None,
    stderr: _FILE = None,
    env: Optional[Mapping[str, str]] = None,
    log: bool = True,
    preexec: Optional[Callable[[], None]] = None,
) -> CompletedProcess:
    with spawn(
        cmdline,
        check=check,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        env=env,
        log=log,
        preexec=preexec,
    ) as process:
        out, err = process.communicate()

    return CompletedProcess(cmdline, process.returncode, out, err)


@contextlib.contextmanager
def spawn(
    cmdline: Sequence[PathString],
    check: bool = True,
    stdin: _FILE = None,
    stdout: _FILE = None,
    stderr: _FILE = None,
    env: Optional[Mapping[str, str]] = None,
    log: bool = True,
    preexec: Optional[Callable[[], None]] = None,
) -> Iterator[Popen]:
    """
    Spawn a subprocess and wait for it when the context is left.

    If env is None, the subprocess inherits our environment. Otherwise it gets exactly the given
    variables and nothing else, which is what the bottle entry commands rely on.
    """
    cmd = [os.fspath(x) for x in cmdline]

    if ARG_VERBOSE.get():
        logging.debug(f"+ {shlex.join(cmd)}")

    if not stdout and not stderr:
        # Unless explicit redirection is done, print all subprocess output on stderr, since we do so as well
        # for djinn's own output.
        stdout = sys.stderr

    if stdin is None:
        stdin = subprocess.DEVNULL

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            text=True,
            env=dict(env) if env is not None else None,
            preexec_fn=preexec,
        )
    except FileNotFoundError as e:
        die(f"{e.filename} not found.")

    try:
        yield proc
        proc.wait()
    except KeyboardInterrupt:
        proc.send_signal(signal.SIGINT)
        raise
    except BaseException:
        proc.terminate()
        raise
    finally:
        returncode = proc.wait()

    if check and returncode != 0:
        if log:
            log_process_failure(cmd, returncode)
        raise subprocess.CalledProcessError(returncode, cmdline)


def find_binary(*names: PathString) -> Optional[Path]:
    for name in names:
        if Path(name).is_absolute():
            if os.access(name, os.X_OK) and Path(name).is_file():
                return Path(name)
            continue

        if binary := shutil.which(name):
            return Path(binary)

    return None


INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGQUIT)


def restore_interrupts() -> None:
    """Meant to run in the child between fork and exec, an ignored signal would survive the exec."""
    for sig in INTERRUPT_SIGNALS:
        signal.signal(sig, signal.SIG_DFL)


@contextlib.contextmanager
def ignore_interrupts() -> Iterator[None]:
    """
    Ignore terminal interrupts while a foreground child owns the terminal, the same way a shell or
    os.system() does. The child gets them and its exit status tells what happened.
    """
    old = {sig: signal.signal(sig, signal.SIG_IGN) for sig in INTERRUPT_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in old.items():
            signal.signal(sig, handler)
