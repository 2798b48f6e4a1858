# dag.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .errors import CyclicDependencyError
from .model import Package

logger = logging.getLogger(__name__)

Phase = List[Package]


def _index(packages: Iterable[Package]) -> Dict[str, Package]:
    by_name: Dict[str, Package] = {}
    for p in packages:
        if p.name in by_name:
            raise ValueError(f"Duplicate package name: {p.name}")
        by_name[p.name] = p
    return by_name


def schedule_phases(packages: Iterable[Package]) -> List[Phase]:
    """
    Partition packages into build phases.

    Every package in phase k has all of its in-set build requirements in
    phases 0..k-1. Phases are sorted by name so the same input always gives
    the same schedule.

    Raises CyclicDependencyError naming the packages that can never become
    buildable.
    """
    by_name = _index(packages)
    # only edges inside the input set matter for ordering
    needs: Dict[str, Set[str]] = {
        name: set(p.build_requires) & set(by_name) for name, p in by_name.items()
    }

    buildable: Set[str] = set(by_name)
    phases: List[Phase] = []

    while buildable:
        installable = {n for n in buildable if not (needs[n] & buildable)}
        has_dependencies = buildable - installable

        # A package can reach has_dependencies indirectly (A needs B, B was
        # just moved there), so keep peeling until nothing else moves.
        while True:
            is_dependent = {n for n in installable if needs[n] & has_dependencies}
            if not is_dependent:
                break
            installable -= is_dependent
            has_dependencies |= is_dependent

        if not installable:
            raise CyclicDependencyError(sorted(buildable))

        phases.append([by_name[n] for n in sorted(installable)])
        buildable = has_dependencies

    logger.debug("scheduled %d packages into %d phases", len(by_name), len(phases))
    return phases


def external_prerequisites(packages: Iterable[Package]) -> List[str]:
    """Build requirements that are not provided by the package set itself."""
    by_name = _index(packages)
    required: Set[str] = set()
    for p in by_name.values():
        required |= p.build_requires
    return sorted(required - set(by_name))


def later_phase_prerequisites(phases: Sequence[Phase], installed: Iterable[str] = ()) -> List[str]:
    """
    In-set packages that a later phase needs present on the build host.

    These have to be installed right after they are built, not just built.
    """
    in_set = {p.name for phase in phases for p in phase}
    required: Set[str] = set()
    for phase in phases[1:]:
        for p in phase:
            required |= p.build_requires
    return sorted((required - set(installed)) & in_set)


def filter_prerequisites(names: Iterable[str], skip_patterns: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Split prerequisite names into (kept, skipped) by regex.

    Skip patterns cover packages the host provides some other way.
    """
    compiled = [re.compile(p) for p in skip_patterns]
    kept: List[str] = []
    skipped: List[str] = []
    for name in names:
        if any(c.search(name) for c in compiled):
            skipped.append(name)
        else:
            kept.append(name)
    return kept, skipped


@dataclass(frozen=True)
class BuildSchedule:
    phases: List[Phase]
    external_prerequisites: List[str] = field(default_factory=list)
    later_prerequisites: List[str] = field(default_factory=list)

    @property
    def packages(self) -> List[Package]:
        return [p for phase in self.phases for p in phase]


def plan_build(packages: Iterable[Package]) -> BuildSchedule:
    """Phases plus the two prerequisite sets the build executor needs."""
    packages = list(packages)
    phases = schedule_phases(packages)
    external = external_prerequisites(packages)
    return BuildSchedule(
        phases=phases,
        external_prerequisites=external,
        later_prerequisites=later_phase_prerequisites(phases, installed=external),
    )
