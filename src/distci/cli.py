# cli.py
from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from distci.builder import TitoBuilder, TitoTagger, YumInstaller, build_all
from distci.catalog import load_catalog, required_packages, select_buildable
from distci.config import BuildMode, load_profile, override, split_names
from distci.dag import plan_build
from distci.errors import BuildFailure, ConfigurationError, CyclicDependencyError, InfrastructureOverload
from distci.executor import LocalExecutor, RemoteExecutor
from distci.git_facts.git import has_tag_for
from distci.plan import DEFAULT_GROUPS, build_test_plan
from distci.retry import run_plan
from distci.ui.console import Console, get_console, set_console


def _fail(ctx, exc: Exception, title: str, suggestion: str | None = None) -> None:
    console = get_console()
    console.print_error(title, str(exc), suggestion=suggestion)
    if ctx.obj.get("debug", False):
        console.print_exception(exc)
    sys.exit(1)


def _load_profile(ctx, profile):
    try:
        return load_profile(profile)
    except ConfigurationError as e:
        _fail(ctx, e, "Invalid profile")


def _schedule(ctx, source, profile, skip_untagged=None):
    console = get_console()
    prof = _load_profile(ctx, profile)
    build_config = override(prof.build, skip_untagged=skip_untagged)

    try:
        catalog = load_catalog(source, scl_prefix=build_config.scl_prefix, ignore=build_config.ignore_packages)
    except (FileNotFoundError, ValueError) as e:
        _fail(ctx, e, "Could not load package catalog")

    is_tagged = None
    if build_config.skip_untagged:
        is_tagged = lambda p: has_tag_for(p.name, cwd=p.source_dir)  # noqa: E731
    packages = select_buildable(
        catalog.values(),
        is_tagged=is_tagged,
        on_skip=lambda p: console.print_info(f"Skipping '{p.name}' in '{p.source_dir}' since it is not tagged."),
    )

    try:
        schedule = plan_build(packages)
    except CyclicDependencyError as e:
        _fail(ctx, e, "Cyclic build dependencies", suggestion="Break the cycle or add one side to the ignore list.")
    return build_config, catalog, schedule


def _test_config(ctx, profile, exclude, include_extended, include_coverage, include_suite,
                 include_web, retry_individually, timeout, broker_hostname):
    prof = _load_profile(ctx, profile)
    try:
        return override(
            prof.tests,
            exclude=tuple(exclude) or None,
            include_extended=split_names(include_extended),
            include_coverage=include_coverage or None,
            include_suite=include_suite,
            include_web=include_web or None,
            retry_individually=retry_individually or None,
            timeout=timeout,
            broker_hostname=broker_hostname,
        )
    except ConfigurationError as e:
        _fail(ctx, e, "Invalid test options")


def test_options(fn):
    """Options shared by `plan` and `test`."""
    options = [
        click.option("--profile", default=None, help="Built-in profile name (fedora, rhel) or a .py profile file"),
        click.option("--exclude", multiple=True, type=click.Choice(sorted(DEFAULT_GROUPS)), help="Exclude a default test group"),
        click.option("--include-extended", default=None, help="Comma separated extended suites (broker, runtime, site, rhc)"),
        click.option("--include-coverage", is_flag=True, default=False, help="Run coverage analysis instead of the tests"),
        click.option("--include-suite", default=None, help="Run one named cucumber suite only"),
        click.option("--include-web", is_flag=True, default=False, help="Run website tests"),
        click.option("--retry-individually", is_flag=True, default=False, help="Retry failing scenarios/methods one at a time"),
        click.option("--timeout", default=None, type=float, help="Per-test timeout in seconds"),
        click.option("--broker-hostname", default=None, help="Broker hostname passed to client tests"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--verbose", is_flag=True, default=False, help="Echo the output of every test")
@click.pass_context
def cli(ctx, debug, verbose):
    """distci: phased package builds and parallel test runs with retries."""
    console = Console(debug=debug, verbose=verbose)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--source", required=True, type=click.Path(exists=True, file_okay=False), help="Source tree to scan for .spec files")
@click.option("--profile", default=None, help="Built-in profile name or a .py profile file")
@click.option("--skip-untagged/--no-skip-untagged", default=None, help="Leave out packages that have never been tagged")
@click.pass_context
def phases(ctx, source, profile, skip_untagged):
    """Print the build phases and prerequisites."""
    console = get_console()
    _, _, schedule = _schedule(ctx, source, profile, skip_untagged)
    console.print_phases([[p.name for p in phase] for phase in schedule.phases])
    console.print_names("External prerequisites", schedule.external_prerequisites)
    console.print_names("Packages that are prereqs for later phases", schedule.later_prerequisites)


@cli.command()
@click.option("--source", required=True, type=click.Path(exists=True, file_okay=False), help="Source tree to scan for .spec files")
@click.option("--profile", default=None, help="Built-in profile name or a .py profile file")
@click.pass_context
def deps(ctx, source, profile):
    """List external packages needed to build and run the source tree."""
    console = get_console()
    prof = _load_profile(ctx, profile)
    try:
        catalog = load_catalog(source, scl_prefix=prof.build.scl_prefix, ignore=prof.build.ignore_packages)
    except (FileNotFoundError, ValueError) as e:
        _fail(ctx, e, "Could not load package catalog")
    for name in required_packages(catalog):
        console.print_info(name)


@cli.command()
@click.option("--source", required=True, type=click.Path(exists=True, file_okay=False), help="Source tree to scan for .spec files")
@click.option("--profile", default=None, help="Built-in profile name or a .py profile file")
@click.option("--incremental", is_flag=True, default=False, help="Recover from or skip failed packages instead of aborting")
@click.option("--retry-with-tag", is_flag=True, default=False, help="Re-tag and rebuild a package once when it fails (incremental only)")
@click.option("--skip-untagged/--no-skip-untagged", default=None, help="Leave out packages that have never been tagged")
@click.pass_context
def build(ctx, source, profile, incremental, retry_with_tag, skip_untagged):
    """Build every package in dependency order."""
    console = get_console()
    build_config, _, schedule = _schedule(ctx, source, profile, skip_untagged)
    build_config = override(
        build_config,
        mode=BuildMode.INCREMENTAL if incremental else None,
        retry_with_tag=retry_with_tag or None,
    )

    try:
        results = build_all(
            schedule,
            build_config,
            builder=TitoBuilder(build_config.artifact_dir),
            installer=YumInstaller(),
            tagger=TitoTagger(),
        )
    except BuildFailure as e:
        _fail(ctx, e, "Build failed")
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    console.print_results(results)
    if any(v == "failed" for v in results.values()):
        sys.exit(1)


@cli.command()
@test_options
@click.pass_context
def plan(ctx, profile, exclude, include_extended, include_coverage, include_suite,
         include_web, retry_individually, timeout, broker_hostname):
    """Print the test queues without running anything."""
    config = _test_config(ctx, profile, exclude, include_extended, include_coverage, include_suite,
                          include_web, retry_individually, timeout, broker_hostname)
    try:
        queues = build_test_plan(config)
    except ConfigurationError as e:
        _fail(ctx, e, "Invalid test selection")
    get_console().print_plan(queues)


@cli.command()
@test_options
@click.option("--host", default=None, help="Run tests on this host over ssh instead of locally")
@click.option("--base-path", default=None, help="Directory the test commands run from")
@click.pass_context
def test(ctx, profile, exclude, include_extended, include_coverage, include_suite,
         include_web, retry_individually, timeout, broker_hostname, host, base_path):
    """Run the test queues in parallel and retry failures."""
    console = get_console()
    config = _test_config(ctx, profile, exclude, include_extended, include_coverage, include_suite,
                          include_web, retry_individually, timeout, broker_hostname)
    try:
        queues = build_test_plan(config)
    except ConfigurationError as e:
        _fail(ctx, e, "Invalid test selection")

    if host:
        executor = RemoteExecutor(host, base_path=base_path or "/root")
    else:
        executor = LocalExecutor(base_path or str(Path(".").resolve()))

    try:
        report = run_plan(queues, executor, config)
    except InfrastructureOverload as e:
        console.print_unresolved(e.failures)
        _fail(ctx, e, "Too many failures", suggestion="This usually means the test host is broken, not the tests.")
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    console.print_unresolved(report.failures)
    if not report.ok:
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
