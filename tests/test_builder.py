"""Tests for the phased build executor."""

from __future__ import annotations

import subprocess

import pytest

from distci.builder import DEPS_INSTALLED, FAILED, OK, RETAGGED, build_all, next_version
from distci.config import BuildConfig, BuildMode
from distci.dag import plan_build
from distci.errors import BuildFailure

from conftest import FakeBuilder, FakeInstaller, FakeTagger, pkg


@pytest.fixture
def schedule():
    return plan_build([pkg("A", "gcc"), pkg("B", "A"), pkg("C", "A", "libfoo")])


FULL = BuildConfig()
INCREMENTAL = BuildConfig(mode=BuildMode.INCREMENTAL)


class TestNextVersion:
    def test_bumps_last_component(self):
        assert next_version("1.4.2", "abc1234ffff") == "1.4.3.gitabc1234"

    def test_replaces_previous_git_suffix(self):
        assert next_version("1.4.3.gitabc1234", "def5678") == "1.4.4.gitdef5678"

    def test_non_numeric_tail(self):
        assert next_version("1.0.beta", "0123456789") == "1.1.beta.git0123456"

    def test_no_numbers(self):
        assert next_version("beta", "") == "beta.1"


class TestFullBuild:
    def test_builds_in_phase_order(self, schedule):
        builder, installer = FakeBuilder(), FakeInstaller()
        results = build_all(schedule, FULL, builder=builder, installer=installer)
        assert builder.built == ["A", "B", "C"]
        assert results == {"A": OK, "B": OK, "C": OK}

    def test_prerequisites_installed_first(self, schedule):
        installer = FakeInstaller()
        build_all(schedule, FULL, builder=FakeBuilder(), installer=installer)
        assert installer.name_calls[0] == (["gcc", "libfoo"], False)

    def test_only_later_phase_prereqs_installed(self, schedule):
        installer = FakeInstaller()
        build_all(schedule, FULL, builder=FakeBuilder(), installer=installer)
        assert installer.artifact_calls == [["/tmp/tito/noarch/A-1.0.0.rpm"]]

    def test_skip_patterns(self, schedule):
        installer = FakeInstaller()
        config = BuildConfig(skip_prereq_patterns=("^lib",))
        build_all(schedule, config, builder=FakeBuilder(), installer=installer)
        assert installer.name_calls[0] == (["gcc"], False)

    def test_failure_is_fatal(self, schedule):
        builder = FakeBuilder(fail=["B"])
        with pytest.raises(BuildFailure) as exc:
            build_all(schedule, FULL, builder=builder, installer=FakeInstaller())
        assert exc.value.package == "B"
        assert builder.built == ["A", "B"]

    def test_install_failure_is_fatal(self, schedule):
        with pytest.raises(BuildFailure, match="install"):
            build_all(schedule, FULL, builder=FakeBuilder(), installer=FakeInstaller(fail_install=True))

    def test_retag_requires_tagger(self, schedule):
        with pytest.raises(ValueError):
            build_all(schedule, BuildConfig(retry_with_tag=True), builder=FakeBuilder(), installer=FakeInstaller())


class TestIncrementalBuild:
    def test_failure_recorded_and_build_continues(self, schedule):
        builder = FakeBuilder(fail=["B"])
        results = build_all(schedule, INCREMENTAL, builder=builder, installer=FakeInstaller(installed=["gcc", "libfoo"]))
        assert results == {"A": OK, "B": FAILED, "C": OK}
        assert builder.built == ["A", "B", "C"]

    def test_every_built_package_installed(self, schedule):
        installer = FakeInstaller()
        build_all(schedule, INCREMENTAL, builder=FakeBuilder(), installer=installer)
        assert len(installer.artifact_calls) == 3

    def test_missing_build_requirements_installed_without_retry(self):
        schedule = plan_build([pkg("A", "libfoo")])
        builder = FakeBuilder(fail=["A"])
        installer = FakeInstaller()
        tagger = FakeTagger()
        config = BuildConfig(mode=BuildMode.INCREMENTAL, retry_with_tag=True)

        results = build_all(schedule, config, builder=builder, installer=installer, tagger=tagger,
                            install_prereqs=False)

        assert results == {"A": DEPS_INSTALLED}
        assert installer.name_calls == [(["libfoo"], True)]
        assert builder.built == ["A"]
        assert tagger.tagged == []

    def test_retag_and_retry_once(self, schedule):
        builder = FakeBuilder(fail_once=["B"])
        tagger = FakeTagger(commit="1234567abcdef")
        config = BuildConfig(mode=BuildMode.INCREMENTAL, retry_with_tag=True)

        results = build_all(schedule, config, builder=builder, installer=FakeInstaller(), tagger=tagger)

        assert results["B"] == RETAGGED
        assert tagger.tagged == [("B", "1.0.1.git1234567")]
        assert builder.built == ["A", "B", "B", "C"]

    def test_retag_retry_failure_moves_on(self, schedule):
        builder = FakeBuilder(fail=["B"])
        tagger = FakeTagger()
        config = BuildConfig(mode=BuildMode.INCREMENTAL, retry_with_tag=True)

        results = build_all(schedule, config, builder=builder, installer=FakeInstaller(), tagger=tagger)

        assert results == {"A": OK, "B": FAILED, "C": OK}
        assert builder.built == ["A", "B", "B", "C"]

    def test_tag_failure_skips_rebuild(self, schedule):
        builder = FakeBuilder(fail=["B"])
        config = BuildConfig(mode=BuildMode.INCREMENTAL, retry_with_tag=True)

        results = build_all(schedule, config, builder=builder, installer=FakeInstaller(), tagger=FakeTagger(ok=False))

        assert results["B"] == FAILED
        assert builder.built == ["A", "B", "C"]

    def test_tagger_error_recorded_as_failure(self, schedule):
        class BrokenTagger(FakeTagger):
            def latest_commit(self, package):
                raise subprocess.CalledProcessError(128, ["git", "log"])

        builder = FakeBuilder(fail=["B"])
        config = BuildConfig(mode=BuildMode.INCREMENTAL, retry_with_tag=True)

        results = build_all(schedule, config, builder=builder, installer=FakeInstaller(), tagger=BrokenTagger())

        assert results == {"A": OK, "B": FAILED, "C": OK}
        assert builder.built == ["A", "B", "C"]

    def test_install_failure_not_fatal(self, schedule):
        results = build_all(schedule, INCREMENTAL, builder=FakeBuilder(), installer=FakeInstaller(fail_install=True))
        assert set(results.values()) == {FAILED}
