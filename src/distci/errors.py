# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .model import FailureRecord


class DistCIError(Exception):
    """Base class for every error raised by distci."""


@dataclass
class ConfigurationError(DistCIError):
    """Unrecognised suite/mode selector or an invalid profile."""
    message: str
    details: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [self.message]
        lines.extend(f"  {d}" for d in self.details)
        return "\n".join(lines)


@dataclass
class CyclicDependencyError(DistCIError):
    """Packages left over after phase scheduling because they depend on each other."""
    packages: List[str]

    def __post_init__(self) -> None:
        self.packages = sorted(self.packages)

    def __str__(self) -> str:
        return f"The packages remaining to build {self.packages} have mutual build dependencies"


@dataclass
class BuildFailure(DistCIError):
    package: str
    reason: str
    exit_code: Optional[int] = None
    output: str = ""

    def __str__(self) -> str:
        msg = f"[{self.package}] {self.reason}"
        if self.exit_code is not None:
            msg += f" (exit={self.exit_code})"
        return msg


@dataclass
class TestFailure(DistCIError):
    """A unit that is still failing after the retry passes."""
    __test__ = False

    record: "FailureRecord"

    def __str__(self) -> str:
        return f"{self.record.title}\n\t{self.record.command}"


@dataclass
class InfrastructureOverload(DistCIError):
    """Too many failures to be worth retrying individually."""
    failures: Sequence["FailureRecord"]
    threshold: int

    def __str__(self) -> str:
        return (
            f"{len(self.failures)} failures exceed the retry threshold of {self.threshold}; "
            "not retrying"
        )
