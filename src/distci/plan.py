# plan.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .config import QUEUE_COUNT, TestPlanConfig
from .errors import ConfigurationError
from .model import TestQueue, TestUnit
from .ui.console import get_console

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitTemplate:
    """
    A test unit before configuration is applied.

    `command` is a str.format template; available fields are
    cucumber_options, broker_cucumber_options, broker_hostname, test_dir.
    """
    queue: int
    title: str
    command: str
    retry_individually: bool = False


def _cucumber(tag: str) -> str:
    return 'su -c "cucumber {cucumber_options} -t @%s {test_dir}"' % tag


# ---------------------------------------------------------------------
# Suite tables
# ---------------------------------------------------------------------

DEFAULT_GROUPS: Dict[str, Tuple[UnitTemplate, ...]] = {
    "broker": (
        UnitTemplate(0, "Broker Functional", 'cd openshift-test/broker; su -c "bundle exec rake test:functionals"'),
        UnitTemplate(1, "Broker Integration", 'cd openshift-test/broker; su -c "bundle exec rake test:integration"'),
        UnitTemplate(1, "Broker Unit 1", 'cd openshift-test/broker; su -c "bundle exec rake test:oo_unit1"'),
        UnitTemplate(1, "Broker Unit 2", 'cd openshift-test/broker; su -c "bundle exec rake test:oo_unit2"'),
        UnitTemplate(2, "Broker Cucumber", 'su -c "cucumber {broker_cucumber_options} -t @broker {test_dir}"'),
    ),
    "runtime": tuple(
        UnitTemplate(i - 1, f"Runtime Group {i}", _cucumber(f"runtime{i}")) for i in range(1, 5)
    ),
    # no default units yet
    "site": (),
    "rhc": (),
}

EXTENDED_SUITES: Dict[str, Tuple[UnitTemplate, ...]] = {
    "broker": tuple(
        UnitTemplate(i - 1, f"REST API Group {i}", _cucumber(f"broker_api{i}"), retry_individually=True)
        for i in range(1, 5)
    ),
    "runtime": tuple(
        UnitTemplate(i - 1, f"Extended Runtime Group {i}", _cucumber(f"runtime_extended{i}"))
        for i in range(1, 4)
    ),
    # accepted, nothing to run
    "site": (),
    "rhc": (
        UnitTemplate(0, "RHC Extended", _cucumber("rhc_extended"), retry_individually=True),
        UnitTemplate(
            1,
            "RHC Integration",
            'cd openshift-test/rhc && RHC_SERVER={broker_hostname} QUIET=1 bundle exec "cucumber {cucumber_options} features"',
            retry_individually=True,
        ),
    ),
}

UNSUPPORTED_EXTENDED = {"site": "Site tests are currently not supported"}

COVERAGE_UNITS: Tuple[UnitTemplate, ...] = (
    UnitTemplate(
        0,
        "Node Unit Coverage",
        "cd openshift-test/node; rake rcov; cp -a coverage /tmp/rhc/openshift_node_coverage",
    ),
    UnitTemplate(
        1,
        "Broker Unit and Functional Coverage",
        "cd openshift-test/broker; rake rcov; cp -a test/coverage /tmp/rhc/openshift_broker_coverage",
    ),
)


# ---------------------------------------------------------------------
# Plan builder
# ---------------------------------------------------------------------

def _render(template: UnitTemplate, config: TestPlanConfig, timeout: float) -> TestUnit:
    command = template.command.format(
        cucumber_options=config.cucumber_options,
        broker_cucumber_options=config.broker_cucumber_options,
        broker_hostname=config.broker_hostname,
        test_dir=config.test_dir,
    )
    return TestUnit(
        title=template.title,
        command=command,
        retry_individually=template.retry_individually or config.retry_individually,
        timeout=config.timeout if config.timeout is not None else timeout,
    )


def _place(queues: List[TestQueue], templates: Sequence[UnitTemplate], config: TestPlanConfig,
           timeout: float | None = None) -> None:
    for t in templates:
        if not 0 <= t.queue < len(queues):
            raise ConfigurationError(f"Unit {t.title!r} targets queue {t.queue}; only {len(queues)} queues exist")
        queues[t.queue].append(_render(t, config, config.default_timeout if timeout is None else timeout))


def build_test_plan(config: TestPlanConfig) -> List[TestQueue]:
    """
    Turn a test configuration into QUEUE_COUNT queues.

    Exactly one mode applies, checked in this order: extended suites,
    coverage, single named suite, web, default groups. Queues may be empty.
    """
    console = get_console()
    queues: List[TestQueue] = [[] for _ in range(QUEUE_COUNT)]

    if config.include_extended is not None:
        names = [n.strip() for n in config.include_extended if n.strip()]
        unknown = [n for n in names if n not in EXTENDED_SUITES]
        if unknown:
            raise ConfigurationError(
                f"Not supported for extended: {', '.join(unknown)}",
                [f"Supported: {', '.join(sorted(EXTENDED_SUITES))}"],
            )
        for name in names:
            if name in UNSUPPORTED_EXTENDED:
                console.print_warning(UNSUPPORTED_EXTENDED[name])
            _place(queues, EXTENDED_SUITES[name], config)
        mode = "extended"

    elif config.include_coverage:
        _place(queues, COVERAGE_UNITS, config)
        mode = "coverage"

    elif config.include_suite:
        suite = config.include_suite
        timeout = config.suite_timeouts.get(suite, config.default_timeout)
        template = UnitTemplate(0, suite, "cucumber {cucumber_options} -t @%s {test_dir}" % suite)
        _place(queues, [template], config, timeout=timeout)
        mode = "suite"

    elif config.include_web:
        console.print_warning("Tests for the website are currently not supported")
        mode = "web"

    else:
        for group, templates in DEFAULT_GROUPS.items():
            if config.excludes(group):
                continue
            _place(queues, templates, config)
        mode = "default"

    logger.debug("test plan (%s): %s", mode, [len(q) for q in queues])
    return queues


def total_units(queues: Sequence[TestQueue]) -> int:
    return sum(len(q) for q in queues)
