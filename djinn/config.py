# SPDX-License-Identifier: LGPL-2.1-or-later

import argparse
import dataclasses
import enum
import functools
import logging
import os
import stat
import textwrap
from collections.abc import Collection, Iterator, Sequence
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from djinn._version import __version__
from djinn.log import Style, die
from djinn.util import StrEnum

T = TypeVar("T")

ConfigParseCallback = Callable[[Optional[str], Optional[T]], Optional[T]]

DEFAULT_CONFIG = Path("/etc/djinn.conf")


class Verb(StrEnum):
    init = enum.auto()
    shell = enum.auto()
    run = enum.auto()
    cleanup = enum.auto()
    revert = "cleanup"
    net = enum.auto()

    def supports_cmdline(self) -> bool:
        return self in (Verb.run, Verb.net)


class NetParameter(StrEnum):
    vm_ip = "vm_ip"
    vm_subnet = "vm_subnet"
    win_ip = "win_ip"
    win_subnet = "win_subnet"


@dataclasses.dataclass(frozen=True)
class RuntimePaths:
    """Layout of the files djinn keeps while a bottle exists."""

    directory: Path

    @property
    def hostname_backup(self) -> Path:
        return self.directory / "djinn.hostname.orig"

    @property
    def hosts_backup(self) -> Path:
        return self.directory / "djinn.hosts.orig"

    @property
    def hostname_staging(self) -> Path:
        return self.directory / "djinn.hostname"

    @property
    def hosts_staging(self) -> Path:
        return self.directory / "djinn.hosts"

    @property
    def environment(self) -> Path:
        return self.directory / "djinn.env"

    @property
    def lock(self) -> Path:
        return self.directory / "djinn.lock"


def try_parse_boolean(s: str) -> Optional[bool]:
    "Parse 1/true/yes/y/t/on as true and 0/false/no/n/f/off/None as false"

    s_l = s.lower()
    if s_l in {"1", "true", "yes", "y", "t", "on", "always"}:
        return True

    if s_l in {"0", "false", "no", "n", "f", "off", "never"}:
        return False

    return None


def parse_boolean(s: str) -> bool:
    value = try_parse_boolean(s)

    if value is None:
        die(f"Invalid boolean literal: {s!r}")

    return value


def config_parse_string(value: Optional[str], old: Optional[str]) -> Optional[str]:
    return value or None


def config_parse_boolean(value: Optional[str], old: Optional[bool]) -> Optional[bool]:
    if value is None:
        return False

    if not value:
        return None

    return parse_boolean(value)


def config_parse_absolute_path(value: Optional[str], old: Optional[Path]) -> Optional[Path]:
    if not value:
        return None

    path = Path(value)
    if not path.is_absolute():
        die(f"{value!r} is not an absolute path")

    return path


def config_parse_timeout(value: Optional[str], old: Optional[float]) -> Optional[float]:
    if not value:
        return None

    try:
        timeout = float(value)
    except ValueError:
        die(f"{value!r} is not a valid number of seconds")

    if timeout < 0:
        die(f"Timeout must not be negative, got {value!r}")

    # Zero means waiting forever.
    return timeout or None


@dataclasses.dataclass(frozen=True)
class ConfigSetting(Generic[T]):
    dest: str
    section: str
    parse: ConfigParseCallback[T] = config_parse_string  # type: ignore # see mypy#3737
    name: str = ""
    default: Optional[T] = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", "".join(x.capitalize() for x in self.dest.split("_") if x))


@dataclasses.dataclass(frozen=True)
class Config:
    """Type-hinted storage for the settings of the configuration file."""

    hostname_suffix: str
    runtime_directory: Path
    startup_timeout: Optional[float]
    shutdown_timeout: Optional[float]
    init: Path
    daemonize: Path
    unshare: Path
    nsenter: Path
    runuser: Path
    systemctl: Path
    verbose: bool

    @classmethod
    def default(cls) -> "Config":
        return parse_config_file(None)

    @property
    def paths(self) -> RuntimePaths:
        return RuntimePaths(self.runtime_directory)

    @property
    def init_name(self) -> str:
        return self.init.name


SETTINGS: list[ConfigSetting[Any]] = [
    ConfigSetting(
        dest="hostname_suffix",
        section="Bottle",
        default="-wsl",
    ),
    ConfigSetting(
        dest="runtime_directory",
        section="Bottle",
        parse=config_parse_absolute_path,
        default=Path("/run"),
    ),
    ConfigSetting(
        dest="startup_timeout",
        section="Bottle",
        parse=config_parse_timeout,
        default=180.0,
    ),
    ConfigSetting(
        dest="shutdown_timeout",
        section="Bottle",
        parse=config_parse_timeout,
        default=60.0,
    ),
    ConfigSetting(
        dest="init",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/lib/systemd/systemd"),
    ),
    ConfigSetting(
        dest="daemonize",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/usr/sbin/daemonize"),
    ),
    ConfigSetting(
        dest="unshare",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/usr/bin/unshare"),
    ),
    ConfigSetting(
        dest="nsenter",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/usr/bin/nsenter"),
    ),
    ConfigSetting(
        dest="runuser",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/sbin/runuser"),
    ),
    ConfigSetting(
        dest="systemctl",
        section="Binaries",
        parse=config_parse_absolute_path,
        default=Path("/bin/systemctl"),
    ),
    ConfigSetting(
        dest="verbose",
        section="Defaults",
        parse=config_parse_boolean,
    ),
]


SETTINGS_LOOKUP_BY_NAME = {s.name: s for s in SETTINGS}


def parse_ini(path: Path, only_sections: Collection[str] = ()) -> Iterator[tuple[str, str, str]]:
    """
    We have our own parser instead of using configparser as the latter does not support specifying the same
    setting multiple times in the same configuration file.
    """
    section: Optional[str] = None
    setting: Optional[str] = None
    value: Optional[str] = None

    for line in textwrap.dedent(path.read_text()).splitlines():
        comment = line.find("#")
        if comment >= 0:
            line = line[:comment]

        if not line.strip():
            continue

        # If we have a section, setting and value, any line that's indented is considered part of the
        # setting's value.
        if section and setting and value is not None and line[0].isspace():
            value = f"{value}\n{line.strip()}"
            continue

        # So the line is not indented, that means we either found a new section or a new setting. Either way,
        # let's yield the previous setting and its value before parsing the new section/setting.
        if section and setting and value is not None:
            yield section, setting, value
            setting = value = None

        line = line.strip()

        if line[0] == "[":
            if line[-1] != "]":
                die(f"{line} is not a valid section")

            section = line[1:-1].strip()
            if not section:
                die("Section name cannot be empty or whitespace")

            continue

        if not section:
            die(f"Setting {line} is located outside of section")

        if only_sections and section not in only_sections:
            continue

        setting, delimiter, value = line.partition("=")
        if not delimiter:
            die(f"Setting {setting} must be followed by '='")
        if not setting:
            die(f"Missing setting name before '=' in {line}")

        setting = setting.strip()
        value = value.strip()

    # Make sure we yield any final setting and its value.
    if section and setting and value is not None:
        yield section, setting, value


def check_config_file(path: Path, owner: int = 0) -> None:
    "Refuse configuration that anybody but root could have written, it names binaries we run as root."
    st = path.stat()

    if st.st_uid != owner:
        die(f"{path} is not owned by root, refusing to use it")

    if st.st_mode & (stat.S_IWGRP | stat.S_IWOTH):
        die(f"{path} is writable by group or others, refusing to use it", hint=f"chmod go-w {path}")


def parse_config_file(path: Optional[Path]) -> Config:
    config: dict[str, Any] = {}

    if path is not None and path.exists():
        logging.debug(f"Loading configuration from {path}")

        for section, name, value in parse_ini(path, only_sections={s.section for s in SETTINGS}):
            if not (s := SETTINGS_LOOKUP_BY_NAME.get(name)):
                die(f"{path.absolute()}: Unknown setting {name}")

            if section != s.section:
                logging.warning(
                    f"{path.absolute()}: Setting {name} should be configured in [{s.section}], not "
                    f"[{section}]."
                )

            config[s.dest] = s.parse(value, config.get(s.dest))

    for s in SETTINGS:
        if s.dest in config:
            continue

        config[s.dest] = s.default if s.default is not None else s.parse(None, None)

    return Config(**config)


@dataclasses.dataclass(frozen=True)
class Args:
    verb: Verb
    cmdline: list[str]
    verbose: bool
    config: Path

    @classmethod
    @functools.lru_cache(maxsize=1)
    def fields(cls) -> dict[str, dataclasses.Field[Any]]:
        return {f.name: f for f in dataclasses.fields(cls)}

    @classmethod
    def from_namespace(cls, ns: dict[str, Any]) -> "Args":
        return cls(**{k: v for k, v in ns.items() if k in cls.fields()})


class CustomHelpFormatter(argparse.HelpFormatter):
    def _format_action_invocation(self, action: argparse.Action) -> str:
        if not action.option_strings or action.nargs == 0:
            return super()._format_action_invocation(action)
        default = self._get_default_metavar_for_optional(action)
        args_string = self._format_args(action, default)
        return ", ".join(action.option_strings) + " " + args_string


def parse_verb(value: str) -> Verb:
    try:
        return Verb[value.replace("-", "_")]
    except KeyError:
        raise argparse.ArgumentTypeError(f"invalid verb {value!r} (choose from {', '.join(Verb.values())})")


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="djinn",
        description="Run systemd in a bottle under WSL2",
        # the synopsis below is supposed to be indented by two spaces
        usage="\n  "
        + textwrap.dedent("""\
              djinn [options…] {b}init{e}
                djinn [options…] {b}shell{e}
                djinn [options…] {b}run{e}      command [arguments…]
                djinn [options…] {b}cleanup{e}
                djinn [options…] {b}revert{e}
                djinn [options…] {b}net{e}      {{vm_ip,vm_subnet,win_ip,win_subnet}}
                djinn -h | --help
                djinn --version
        """).format(b=Style.bold, e=Style.reset),
        allow_abbrev=False,
        formatter_class=CustomHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + __version__,
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        help="Turn on verbose output",
        action="store_true",
        default=False,
    )
    parser.add_argument(
        "--config",
        help="Read settings from the given configuration file",
        type=Path,
        default=DEFAULT_CONFIG,
        metavar="PATH",
    )
    parser.add_argument(
        "verb",
        type=parse_verb,
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "cmdline",
        nargs=argparse.REMAINDER,
        help=argparse.SUPPRESS,
    )

    return parser


def parse_config(argv: Sequence[str] = ()) -> tuple[Args, Config]:
    parser = create_argument_parser()
    args = Args.from_namespace(vars(parser.parse_args(argv)))

    if args.cmdline and not args.verb.supports_cmdline():
        die(f"Arguments are not supported for the {args.verb} verb")

    if args.verb == Verb.run and not args.cmdline:
        die("The run verb requires a command to run", hint="djinn run command [arguments…]")

    if args.verb == Verb.net:
        if len(args.cmdline) != 1 or args.cmdline[0] not in [str(p) for p in NetParameter]:
            die(
                "The net verb requires exactly one parameter",
                hint=f"Choose one of {', '.join(str(p) for p in NetParameter)}",
            )

    if args.config != DEFAULT_CONFIG and os.getuid() != 0:
        die(
            "--config may only be used by root",
            hint=f"Ask an administrator to put the settings into {DEFAULT_CONFIG}",
        )

    if args.config.exists():
        check_config_file(args.config)

    config = parse_config_file(args.config)

    if config.verbose and not args.verbose:
        args = dataclasses.replace(args, verbose=True)

    return args, config
