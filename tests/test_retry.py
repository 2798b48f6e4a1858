"""Tests for the retry coordinator."""

from __future__ import annotations

import pytest

from distci.config import TestPlanConfig
from distci.errors import InfrastructureOverload
from distci.model import FailureRecord, TestUnit
from distci.retry import retry_threshold, run_plan

from conftest import FakeExecutor


def units(prefix, n):
    return [TestUnit(title=f"{prefix}{i}", command=f"run {prefix}{i}") for i in range(n)]


class CountingNarrower:
    """
    Splits a first-time failure into `fanout` distinct records (per title
    overrides in `by_title`); records that fail again are retried verbatim.
    """

    def __init__(self, fanout, by_title=None):
        self.fanout = fanout
        self.by_title = by_title or {}

    def narrow(self, unit, output):
        if "#" in unit.title:
            return [FailureRecord.from_unit(unit)]
        n = self.by_title.get(unit.title, self.fanout)
        return [
            FailureRecord.from_unit(unit, title=f"{unit.title}#{i}", command=f"{unit.command} --case {i}")
            for i in range(n)
        ]


def ten_unit_plan():
    return [units("a", 3), units("b", 3), units("c", 2), units("d", 2)]


class TestThreshold:
    def test_formula(self):
        assert retry_threshold(10, 8) == 80

    def test_over_threshold_fails_without_retry(self):
        # 10 units, each narrowed to 9 records -> 90 > 80; one less on a passing unit -> 81
        executor = FakeExecutor({"run a0": ("", 0)}, default=("", 1))
        queues = ten_unit_plan()
        with pytest.raises(InfrastructureOverload) as exc:
            run_plan(queues, executor, TestPlanConfig(), narrower=CountingNarrower(9))
        assert len(exc.value.failures) == 81
        assert exc.value.threshold == 80
        # only the initial parallel run happened
        assert len(executor.calls) == 10

    def test_under_threshold_retries(self):
        # a0 passes; eight units narrow to 8 records and a1 to 15 -> 79 failures
        executor = FakeExecutor({"run a0": ("", 0)}, default=("", 1))
        narrower = CountingNarrower(8, by_title={"a1": 15})
        report = run_plan(ten_unit_plan(), executor, TestPlanConfig(retry_passes=1), narrower=narrower)
        assert report.threshold == 80
        assert report.passes == 1
        assert len(report.failures) == 79
        assert len(executor.calls) == 10 + 79

    def test_multiplier_is_configurable(self):
        executor = FakeExecutor(default=("", 1))
        with pytest.raises(InfrastructureOverload):
            run_plan([units("a", 2)], executor, TestPlanConfig(retry_multiplier=0))


class TestRetryPasses:
    def test_clean_run_never_retries(self):
        executor = FakeExecutor()
        report = run_plan(ten_unit_plan(), executor, TestPlanConfig())
        assert report.ok
        assert report.passes == 0
        assert report.total_units == 10
        assert len(executor.calls) == 10

    def test_stops_after_clean_first_pass(self):
        executor = FakeExecutor({"run b1": [("", 1), ("", 0)]})
        report = run_plan(ten_unit_plan(), executor, TestPlanConfig())
        assert report.ok
        assert report.passes == 1
        assert executor.commands.count("run b1") == 2

    def test_two_passes_then_report(self):
        executor = FakeExecutor({"run c0": ("", 1)})
        report = run_plan(ten_unit_plan(), executor, TestPlanConfig())
        assert report.passes == 2
        assert [f.title for f in report.failures] == ["c0"]
        assert executor.commands.count("run c0") == 3

    def test_passes_configurable(self):
        executor = FakeExecutor({"run c0": ("", 1)})
        report = run_plan(ten_unit_plan(), executor, TestPlanConfig(retry_passes=0))
        assert report.passes == 0
        assert not report.ok

    def test_failures_deduplicated(self):
        same = TestUnit(title="dup", command="run dup")
        executor = FakeExecutor({"run dup": ("", 1)})
        report = run_plan([[same], [same], [], []], executor, TestPlanConfig(retry_passes=1))
        assert len(report.failures) == 1
        # two parallel runs, one retry of the deduplicated record
        assert executor.commands.count("run dup") == 3

    def test_retry_pass_runs_narrowed_commands(self):
        output = (
            "Failing Scenarios:\n"
            "cucumber openshift-test/tests/x.feature:5 # Scenario: x\n"
        )
        unit = TestUnit(title="Runtime Group 1", command="cucumber -t @runtime1 openshift-test/tests",
                        retry_individually=True)
        narrowed = 'su -c "cucumber --strict openshift-test/tests/x.feature:5"'
        executor = FakeExecutor({unit.command: (output, 1), narrowed: ("", 1)})
        config = TestPlanConfig(cucumber_options="--strict")

        report = run_plan([[unit], [], [], []], executor, config)

        assert executor.commands == [unit.command, narrowed, narrowed]
        assert [(f.title, f.command, f.original_title) for f in report.failures] == [
            ("Runtime Group 1", narrowed, "Runtime Group 1")
        ]

    def test_original_title_survives_retries(self):
        executor = FakeExecutor(default=("", 1))
        report = run_plan([units("a", 1)], executor, TestPlanConfig(), narrower=CountingNarrower(1))
        assert report.passes == 2
        assert [f.title for f in report.failures] == ["a0#0"]
        assert report.failures[0].original_title == "a0"
