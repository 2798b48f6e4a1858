# narrowing.py
"""
Failure narrowing.

When a unit fails, its captured output is scanned for a known failure
signature so the retry can target the smallest reproducible piece (a single
scenario, a single feature file, a single test method) instead of the whole
unit. Signatures are tried in order; the first one that yields records wins.
If none match, the unit is retried verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .config import TestPlanConfig
from .model import FailureRecord, TestUnit, dedupe_failures


@dataclass(frozen=True)
class NarrowingOptions:
    test_dir: str = "openshift-test/tests"
    cucumber_options: str = ""
    # {options} and {path} are filled in; path is <test_dir>/<file>[:<line>]
    cucumber_retry: str = 'su -c "cucumber {options} {path}"'


Extractor = Callable[[TestUnit, str, NarrowingOptions], List[FailureRecord]]


@dataclass(frozen=True)
class FailureSignature:
    name: str
    matches: Callable[[TestUnit, str, NarrowingOptions], bool]
    extract: Extractor


# ---------------------------------------------------------------------
# Cucumber "Failing Scenarios:" block
# ---------------------------------------------------------------------

def _scenario_re(options: NarrowingOptions) -> "re.Pattern[str]":
    return re.compile(r"cucumber\s+(?:\S+\s+)*?%s/(\S+?\.feature):(\d+)" % re.escape(options.test_dir.rstrip("/")))


def _has_failing_scenarios(unit: TestUnit, output: str, options: NarrowingOptions) -> bool:
    return "Failing Scenarios:" in output and _scenario_re(options).search(output) is not None


def _extract_scenarios(unit: TestUnit, output: str, options: NarrowingOptions) -> List[FailureRecord]:
    pattern = _scenario_re(options)
    root = options.test_dir.rstrip("/")
    records: List[FailureRecord] = []
    for line in output.splitlines():
        m = pattern.search(line)
        if not m:
            continue
        test_file, scenario = m.group(1), m.group(2)
        if unit.retry_individually:
            title = unit.title
            path = f"{root}/{test_file}:{scenario}"
        else:
            suffix = f" ({test_file})"
            # a retried per-file record already carries its file
            title = unit.title if unit.title.endswith(suffix) else unit.title + suffix
            path = f"{root}/{test_file}"
        command = options.cucumber_retry.format(options=options.cucumber_options, path=path)
        records.append(FailureRecord.from_unit(unit, title=title, command=command))
    return dedupe_failures(records)


# ---------------------------------------------------------------------
# Test::Unit failure trace
# ---------------------------------------------------------------------

_TEST_METHOD_RE = re.compile(r"^(test_\w+)\((\w+Test)\) \[/.*/(test/.*_test\.rb):(\d+)\]:")
_CHDIR_RE = re.compile(r"^(cd .+?; )")


def _has_unit_test_failure(unit: TestUnit, output: str, options: NarrowingOptions) -> bool:
    return unit.retry_individually and "Failure:" in output and "rake_test_loader" in output


def _extract_test_methods(unit: TestUnit, output: str, options: NarrowingOptions) -> List[FailureRecord]:
    m = _CHDIR_RE.match(unit.command)
    chdir = m.group(1) if m else ""
    records: List[FailureRecord] = []
    for line in output.splitlines():
        t = _TEST_METHOD_RE.match(line)
        if not t:
            continue
        test_name, class_name, file_name = t.group(1), t.group(2), t.group(3)
        records.append(
            FailureRecord.from_unit(
                unit,
                title=f"{class_name} ({test_name})",
                command=f"{chdir}ruby -Ilib:test {file_name} -n {test_name}",
            )
        )
    return dedupe_failures(records)


CUCUMBER_SCENARIOS = FailureSignature("cucumber_scenarios", _has_failing_scenarios, _extract_scenarios)
UNIT_TEST_METHOD = FailureSignature("unit_test_method", _has_unit_test_failure, _extract_test_methods)

DEFAULT_SIGNATURES: Sequence[FailureSignature] = (CUCUMBER_SCENARIOS, UNIT_TEST_METHOD)


class Narrower:
    """Turns a failed unit and its output into retry records."""

    def __init__(
        self,
        options: Optional[NarrowingOptions] = None,
        signatures: Sequence[FailureSignature] = DEFAULT_SIGNATURES,
    ):
        self.options = options or NarrowingOptions()
        self.signatures = list(signatures)

    @classmethod
    def from_config(cls, config: TestPlanConfig) -> Narrower:
        return cls(NarrowingOptions(test_dir=config.test_dir, cucumber_options=config.cucumber_options))

    def narrow(self, unit: TestUnit, output: str) -> List[FailureRecord]:
        for sig in self.signatures:
            if not sig.matches(unit, output, self.options):
                continue
            records = sig.extract(unit, output, self.options)
            if records:
                return records
        return [FailureRecord.from_unit(unit)]
