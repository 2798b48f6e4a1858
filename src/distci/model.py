# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

# Default per-unit timeout in seconds
DEFAULT_TIMEOUT = 4800


@dataclass(frozen=True)
class Package:
    """
    A buildable source package discovered in the source tree.

    build_requires:   names needed only to build this package
    runtime_requires: names needed when the built package runs
    install_name:     name handed to the package manager when installing
    """
    name: str
    source_dir: str
    build_requires: FrozenSet[str] = frozenset()
    runtime_requires: FrozenSet[str] = frozenset()
    install_name: str = ""
    version: str = "0.0.0"
    spec_file: Optional[str] = None

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "build_requires", frozenset(self.build_requires))
        object.__setattr__(self, "runtime_requires", frozenset(self.runtime_requires))
        if not self.install_name:
            object.__setattr__(self, "install_name", self.name)
        if self.name in self.build_requires:
            raise ValueError(f"Package '{self.name}' lists itself as a build requirement")


@dataclass(frozen=True)
class TestUnit:
    """A single test command placed in a queue."""
    __test__ = False  # not a pytest class

    title: str
    command: str
    retry_individually: bool = False
    timeout: float = DEFAULT_TIMEOUT


TestQueue = List[TestUnit]


@dataclass(frozen=True)
class FailureRecord:
    """
    A failed unit, possibly narrowed to a smaller retry target.

    title/command may have been rewritten to a single scenario or test method;
    original_title keeps the title of the unit that actually failed.
    """
    title: str
    command: str
    retry_individually: bool = False
    timeout: float = DEFAULT_TIMEOUT
    original_title: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.title, self.command)

    def as_unit(self) -> TestUnit:
        return TestUnit(
            title=self.title,
            command=self.command,
            retry_individually=self.retry_individually,
            timeout=self.timeout,
        )

    @classmethod
    def from_unit(cls, unit: TestUnit, *, title: str | None = None, command: str | None = None) -> FailureRecord:
        return cls(
            title=unit.title if title is None else title,
            command=unit.command if command is None else command,
            retry_individually=unit.retry_individually,
            timeout=unit.timeout,
            original_title=unit.title,
        )


def dedupe_failures(failures: List[FailureRecord]) -> List[FailureRecord]:
    """Drop repeated (title, command) pairs, keeping first-seen order."""
    seen = set()
    out: List[FailureRecord] = []
    for f in failures:
        if f.key in seen:
            continue
        seen.add(f.key)
        out.append(f)
    return out


@dataclass
class RunReport:
    """Outcome of a full test run after the retry passes."""
    failures: List[FailureRecord] = field(default_factory=list)
    passes: int = 0
    total_units: int = 0
    threshold: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures
