# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import os
from pathlib import Path
from typing import Any

import pytest

import djinn
import djinn.user
from djinn.config import Args, Config, RuntimePaths, Verb
from djinn.context import Context
from djinn.environment import EnvironmentBridge
from djinn.identity import IdentityStore
from djinn.run import CompletedProcess
from djinn.user import InvokingUser

from . import HOSTS, FakeLocator, FakeMounts

ENVIRON = {
    "TERM": "xterm-256color",
    "WSL_DISTRO_NAME": "Ubuntu",
    "WSL_INTEROP": "/run/WSL/8_interop",
    "WSLENV": "",
}


@pytest.fixture
def etc(tmp_path: Path) -> Path:
    d = tmp_path / "etc"
    d.mkdir()
    (d / "hostname").write_text("devbox\n")
    (d / "hosts").write_text(HOSTS)
    return d


@pytest.fixture
def paths(tmp_path: Path) -> RuntimePaths:
    d = tmp_path / "run"
    d.mkdir()
    return RuntimePaths(d)


@pytest.fixture
def mounts(tmp_path: Path) -> FakeMounts:
    return FakeMounts(tmp_path / "mounts")


@pytest.fixture
def store(paths: RuntimePaths, etc: Path, mounts: FakeMounts) -> IdentityStore:
    return IdentityStore(paths, etc=etc, mounts=mounts.table, bind=mounts.bind, unbind=mounts.unbind)


@pytest.fixture
def privileges(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, int]]:
    calls: list[tuple[str, int]] = []

    def setresgid(r: int, e: int, s: int) -> None:
        assert r == e == s
        calls.append(("gid", r))

    def setresuid(r: int, e: int, s: int) -> None:
        assert r == e == s
        calls.append(("uid", r))

    monkeypatch.setattr(djinn.user.os, "setresgid", setresgid)
    monkeypatch.setattr(djinn.user.os, "setresuid", setresuid)
    return calls


@pytest.fixture
def launched(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Records every command the lifecycle code runs instead of running it."""
    calls: list[dict[str, Any]] = []

    def run(cmdline: Any, **kwargs: Any) -> Any:
        calls.append({"cmdline": [os.fspath(c) for c in cmdline], **kwargs})
        return CompletedProcess(cmdline, 0, None, None)

    monkeypatch.setattr(djinn, "run", run)
    monkeypatch.setattr(djinn, "find_binary", lambda b: Path(b))
    return calls


@pytest.fixture
def context(
    paths: RuntimePaths,
    store: IdentityStore,
    privileges: list[tuple[str, int]],
    launched: list[dict[str, Any]],
) -> Context:
    config = dataclasses.replace(Config.default(), runtime_directory=paths.directory)
    return Context(
        Args(verb=Verb.init, cmdline=[], verbose=False, config=Path("/nonexistent")),
        config,
        user=InvokingUser(uid=1000, gid=1000, name="tester"),
        locator=FakeLocator(0),
        identity=store,
        environment=EnvironmentBridge(paths.environment, environ=ENVIRON),
    )
