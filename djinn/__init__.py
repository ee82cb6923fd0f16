# SPDX-License-Identifier: LGPL-2.1-or-later

import enum
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

from djinn.config import Args, Config, NetParameter, Verb
from djinn.context import Context
from djinn.environment import EnvironmentBridge
from djinn.host import check_host
from djinn.identity import IdentityStore
from djinn.log import complete_step, die, log_notice
from djinn.net import query
from djinn.process import BottleTimeout, PsutilLocator, wait_for_exit, wait_for_init
from djinn.run import find_binary, ignore_interrupts, restore_interrupts, run
from djinn.user import InvokingUser, acquire_root, drop_to
from djinn.util import PathString, StrEnum, flock


class BottleState(StrEnum):
    absent = enum.auto()
    exists_outside = enum.auto()
    exists_inside = enum.auto()

    @classmethod
    def from_pid(cls, pid: int) -> "BottleState":
        if pid == 0:
            return cls.absent
        # Inside the bottle its init is the root of our pid namespace.
        if pid == 1:
            return cls.exists_inside
        return cls.exists_outside


def bottle_state(context: Context) -> tuple[BottleState, int]:
    pid = context.locator.locate_init()
    state = BottleState.from_pid(pid)

    if state == BottleState.absent:
        logging.debug("Bottle doesn't exist")
    elif state == BottleState.exists_inside:
        logging.debug("Bottle exists, and we're in it")
    else:
        logging.debug(f"Bottle exists ({pid}), but we're outside")

    return state, pid


def require_binaries(*binaries: Path) -> None:
    if missing := [os.fspath(b) for b in binaries if not find_binary(b)]:
        die(
            f"Required binaries not found: {', '.join(missing)}",
            hint="Install them or point the [Binaries] section of djinn.conf at them",
        )


def launch(cmdline: Sequence[PathString], env: Mapping[str, str]) -> int:
    with ignore_interrupts():
        rc = run(
            cmdline,
            check=False,
            stdin=sys.stdin,
            stdout=sys.stdout,
            stderr=sys.stderr,
            env=env,
            preexec=restore_interrupts,
        ).returncode

    # Report death by signal the way shells do.
    return rc if rc >= 0 else 128 - rc


def start_bottle(context: Context) -> int:
    """Must be called as root. Returns the pid of the bottle's init."""
    config = context.config
    identity = context.identity

    require_binaries(config.init, config.daemonize, config.unshare)

    with complete_step("Initializing bottle…"):
        config.runtime_directory.mkdir(parents=True, exist_ok=True)

        with flock(config.paths.lock):
            # Another invocation might have created the bottle while we were waiting for the lock.
            if (pid := context.locator.locate_init()) != 0:
                logging.debug(f"Bottle appeared while waiting for the lock ({pid})")
                return pid

            hostname = identity.backup_hostname()
            identity.backup_hosts()

            virtual = f"{hostname}{config.hostname_suffix}"
            identity.install_virtual_hostname(virtual)
            identity.install_virtual_hosts(hostname, virtual)

            context.environment.save()

            with complete_step(f"Starting {config.init_name}"):
                run([
                    config.daemonize,
                    config.unshare, "-fp", "--propagation", "shared", "--mount-proc",
                    config.init,
                ])  # fmt: skip

                try:
                    pid = wait_for_init(context.locator, timeout=config.startup_timeout)
                except BottleTimeout as e:
                    die(
                        f"{config.init_name} did not show up: {e}",
                        hint="Raise StartupTimeout= in the [Bottle] section of djinn.conf or set it to 0",
                    )

    logging.debug(f"Bottle is up, {config.init_name} has pid {pid}")
    return pid


def teardown_bottle(context: Context) -> None:
    context.identity.teardown()
    context.environment.remove()


def run_init(context: Context) -> int:
    state, _ = bottle_state(context)

    if state != BottleState.absent:
        log_notice("No need to initialize, the bottle exists already")
        return 0

    with acquire_root(context.user):
        start_bottle(context)

    return 0


def run_shell(context: Context) -> int:
    state, pid = bottle_state(context)
    config = context.config

    if state == BottleState.exists_inside:
        log_notice("No need to start a shell, we're inside the bottle already")
        return 0

    require_binaries(config.nsenter, config.runuser)

    with acquire_root(context.user):
        if state == BottleState.absent:
            pid = start_bottle(context)

        env, names = context.environment.load()

        return launch(
            [
                config.nsenter, "-t", str(pid), "-m", "-p",
                config.runuser, "-l", context.user.name, "-w", names,
            ],
            env=env,
        )  # fmt: skip


def run_command(context: Context) -> int:
    state, pid = bottle_state(context)
    command = context.args.cmdline
    config = context.config

    if state == BottleState.exists_inside:
        logging.debug("Already inside the bottle, running the command directly")
        drop_to(context.user.uid, context.user.gid)
        env, _ = context.environment.load()
        return launch(command, env=os.environ | env)

    require_binaries(config.nsenter, config.runuser)

    with acquire_root(context.user):
        if state == BottleState.absent:
            pid = start_bottle(context)

        env, _ = context.environment.load()

        # nsenter resets the working directory when entering the mount namespace, so pass it explicitly.
        return launch(
            [
                config.nsenter, "-t", str(pid), f"--wd={Path.cwd()}", "-m", "-p",
                config.runuser, "-u", context.user.name, "--",
                *command,
            ],
            env=env,
        )  # fmt: skip


def run_cleanup(context: Context) -> int:
    state, pid = bottle_state(context)
    config = context.config

    if state == BottleState.exists_inside:
        die("Cannot destroy the bottle from inside it", hint="Run djinn cleanup from outside the bottle")

    if state == BottleState.absent:
        if not context.identity.initialized and not context.environment.path.exists():
            log_notice("No need to clean up, there is no bottle")
            return 0

        # A previous init failed halfway, so unwind whatever it left behind.
        with acquire_root(context.user), complete_step("Removing leftovers of a previous bottle…"):
            with flock(config.paths.lock):
                teardown_bottle(context)

        return 0

    require_binaries(config.nsenter, config.systemctl)

    with acquire_root(context.user), complete_step("Destroying bottle…"):
        with flock(config.paths.lock):
            with complete_step(f"Powering off {config.init_name} ({pid})"):
                run([config.nsenter, "-t", str(pid), "-m", "-p", config.systemctl, "poweroff"])

                try:
                    wait_for_exit(context.locator, timeout=config.shutdown_timeout)
                except BottleTimeout as e:
                    die(
                        f"{config.init_name} did not exit: {e}",
                        hint="Raise ShutdownTimeout= in the [Bottle] section of djinn.conf or set it to 0",
                    )

            teardown_bottle(context)

    return 0


def run_verb(args: Args, config: Config) -> int:
    if args.verb == Verb.net:
        print(query(NetParameter(args.cmdline[0])))
        return 0

    check_host()

    paths = config.paths
    context = Context(
        args,
        config,
        user=InvokingUser.capture(),
        locator=PsutilLocator(config.init_name),
        identity=IdentityStore(paths),
        environment=EnvironmentBridge(paths.environment),
    )

    if args.verb == Verb.init:
        return run_init(context)

    if args.verb == Verb.shell:
        return run_shell(context)

    if args.verb == Verb.run:
        return run_command(context)

    if args.verb == Verb.cleanup:
        return run_cleanup(context)

    die(f"Unknown verb {args.verb}")
