from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from distci.model import Package
from distci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console()
    set_console(console)
    yield console


def pkg(name: str, *needs: str, version: str = "1.0.0") -> Package:
    return Package(name=name, source_dir=f"/src/{name}", build_requires=frozenset(needs), version=version)


class FakeExecutor:
    """
    Scripted CommandExecutor.

    `responses` maps a command to (output, exit_code) or to a list of them,
    consumed one per call. Unknown commands pass.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None,
                 default: Tuple[str, int] = ("", 0)):
        self.responses = dict(responses or {})
        self.default = default
        self.calls: List[Tuple[str, float, str]] = []
        self._lock = threading.Lock()

    def run(self, command: str, timeout: float):
        with self._lock:
            self.calls.append((command, timeout, threading.current_thread().name))
            r = self.responses.get(command, self.default)
            if isinstance(r, list):
                r = r.pop(0) if len(r) > 1 else r[0]
            return r

    @property
    def commands(self) -> List[str]:
        return [c for c, _, _ in self.calls]


class FakeBuilder:
    def __init__(self, fail: Sequence[str] = (), fail_once: Sequence[str] = ()):
        self.fail = set(fail)
        self.fail_once = set(fail_once)
        self.built: List[str] = []

    def build(self, package: Package) -> bool:
        self.built.append(package.name)
        if package.name in self.fail_once:
            self.fail_once.discard(package.name)
            return False
        return package.name not in self.fail

    def artifacts(self, package: Package) -> List[str]:
        return [f"/tmp/tito/noarch/{package.install_name}-{package.version}.rpm"]


class FakeInstaller:
    def __init__(self, installed: Sequence[str] = (), fail_install: bool = False):
        self.installed = set(installed)
        self.fail_install = fail_install
        self.name_calls: List[Tuple[List[str], bool]] = []
        self.artifact_calls: List[List[str]] = []

    def missing(self, names):
        return [n for n in names if n not in self.installed]

    def install_names(self, names, skip_broken=False):
        self.name_calls.append((list(names), skip_broken))
        self.installed.update(names)
        return True

    def install(self, artifact_paths):
        self.artifact_calls.append(list(artifact_paths))
        return not self.fail_install


class FakeTagger:
    def __init__(self, ok: bool = True, commit: str = "abcdef0123456789"):
        self.ok = ok
        self.commit = commit
        self.tagged: List[Tuple[str, str]] = []

    def latest_commit(self, package):
        return self.commit

    def next_version(self, current_version, commit_id):
        from distci.builder import next_version
        return next_version(current_version, commit_id)

    def tag(self, package, version):
        self.tagged.append((package.name, version))
        return self.ok
